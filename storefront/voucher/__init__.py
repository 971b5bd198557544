from flask import Blueprint

bp = Blueprint("voucher", __name__, url_prefix="/vouchers")

from . import routes  # noqa: E402,F401
