from flask import Blueprint

bp = Blueprint("api", __name__)

from . import usage, reviews  # noqa: E402,F401
