from __future__ import annotations

import uuid


def new_concurrency_stamp(current=None) -> str:
    """
    Fresh opaque concurrency stamp.

    Used as the mapper version_id_generator, so SQLAlchemy calls it with the
    current value on every flush of a modified row. The old value is ignored.
    """
    return uuid.uuid4().hex
