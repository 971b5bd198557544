from flask import g

from ..errors import NotFoundError
from ..extensions import db
from ..model import Notification
from ..utils.api import ok
from ..utils.decorators import login_required
from . import bp


@bp.get("")
@login_required
def list_notifications():
    notes = (Notification.query
             .filter_by(user_id=g.user.id)
             .order_by(Notification.created_at.desc(), Notification.id.desc())
             .limit(50)
             .all())
    return ok("notifications", {
        "unread": sum(1 for n in notes if not n.is_read),
        "items": [n.as_api() for n in notes],
    })


@bp.put("/<int:note_id>/read")
@login_required
def mark_as_read(note_id):
    note = db.session.get(Notification, note_id)
    if not note or note.user_id != g.user.id:
        raise NotFoundError("notification", note_id)
    note.is_read = True
    db.session.commit()
    return ok("Marked as read", {"notification": note.as_api()})
