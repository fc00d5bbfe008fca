from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from alianah.extensions import db
from alianah.models import IdempotencyKey

logger = logging.getLogger(__name__)


def is_claimed(scope: str, key: str) -> bool:
    return (
        db.session.query(IdempotencyKey.id)
        .filter(IdempotencyKey.scope == scope, IdempotencyKey.key == key)
        .first()
        is not None
    )


def claim(scope: str, key: str) -> bool:
    """
    Claim a once-only side effect. True means the caller owns it.

    Commits immediately, so any pending work in the session must already be
    committed: a lost race rolls the session back.
    """
    if is_claimed(scope, key):
        return False

    db.session.add(IdempotencyKey(scope=scope, key=key))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("idempotency: lost claim race scope=%s key=%s", scope, key)
        return False
    return True
