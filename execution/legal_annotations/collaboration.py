"""
Sharing permissions and comment threading.

Permission levels are ordered owner > edit > comment > view. The owner of an
annotation implicitly holds every permission; other users hold whatever
their share grants, or nothing.
"""

from typing import Iterable, Optional

from .models import Annotation, AnnotationComment, AnnotationShare, PERMISSION_LEVELS

OWNER = "owner"
_RANK = {level: i + 1 for i, level in enumerate(PERMISSION_LEVELS)}
_RANK[OWNER] = len(PERMISSION_LEVELS) + 1


def permission_rank(level: Optional[str]) -> int:
    """Numeric rank of a permission level (0 for none)."""
    if level is None:
        return 0
    if level not in _RANK:
        raise ValueError(f"Unknown permission level: {level!r}")
    return _RANK[level]


def permission_for(
    annotation: Annotation,
    user_id: Optional[str],
    shares: Iterable[AnnotationShare] = (),
) -> Optional[str]:
    """
    Effective permission of a user on an annotation.

    Returns:
        "owner", "edit", "comment", "view", or None when the user has no access
    """
    if not user_id:
        return None
    if annotation.user_id == user_id:
        return OWNER

    best = None
    for share in shares:
        if share.annotation_id != annotation.id or share.shared_with_user_id != user_id:
            continue
        if permission_rank(share.permission_level) > permission_rank(best):
            best = share.permission_level
    return best


def has_permission(level: Optional[str], required: str) -> bool:
    return permission_rank(level) >= permission_rank(required)


def can_view(level: Optional[str]) -> bool:
    return has_permission(level, "view")


def can_comment(level: Optional[str]) -> bool:
    return has_permission(level, "comment")


def can_edit(level: Optional[str]) -> bool:
    return has_permission(level, "edit")


def can_delete(level: Optional[str]) -> bool:
    # Owner or a collaborator holding edit
    return has_permission(level, "edit")


def can_share(level: Optional[str]) -> bool:
    return level == OWNER


def _created_key(comment: AnnotationComment):
    return (comment.created_at or "", comment.id)


def build_comment_threads(comments: Iterable[AnnotationComment]) -> list[AnnotationComment]:
    """
    Arrange flat comments into one-level threads.

    Replies attach to their thread root (a reply to a reply joins the root's
    thread). Comments whose parent is missing are shown as top-level.
    Roots and replies are ordered chronologically.
    """
    comments = list(comments)
    by_id = {c.id: c for c in comments}

    def root_of(comment: AnnotationComment) -> Optional[AnnotationComment]:
        seen = set()
        current = comment
        while current.parent_comment_id:
            if current.id in seen:
                return None
            seen.add(current.id)
            parent = by_id.get(current.parent_comment_id)
            if parent is None:
                return current if current is not comment else None
            current = parent
        return current if current is not comment else None

    roots = []
    replies: dict[str, list[AnnotationComment]] = {}
    for comment in comments:
        root = root_of(comment)
        if root is None:
            roots.append(comment)
        else:
            replies.setdefault(root.id, []).append(comment)

    threads = []
    for root in sorted(roots, key=_created_key):
        thread = AnnotationComment(
            id=root.id,
            annotation_id=root.annotation_id,
            user_id=root.user_id,
            content=root.content,
            parent_comment_id=root.parent_comment_id,
            created_at=root.created_at,
            updated_at=root.updated_at,
            replies=sorted(replies.get(root.id, []), key=_created_key),
        )
        threads.append(thread)
    return threads
