"""Comment model, per-room store and outgoing comment flow."""
from .schemas import Comment, CommentStatus, Participant
from .service import CommentService
from .store import RoomCommentStore

__all__ = ["Comment", "CommentStatus", "Participant", "CommentService", "RoomCommentStore"]
