from decimal import Decimal


def _strip_zeros(value):
    if value is None:
        return None
    # plain notation, normalize() alone turns 100 into 1E+2
    return Decimal(format(Decimal(value).normalize(), "f"))


class Merger:
    """Copy non-None values onto ``target`` and remember what changed."""

    def __init__(self, target):
        self.target = target
        self.changes = []

    def merge(self, label: str, attr: str, new_value):
        old_value = getattr(self.target, attr)
        if new_value is not None and old_value != new_value:
            setattr(self.target, attr, new_value)
            self.changes.append((label, old_value, new_value))
        return self

    def merge_decimal(self, label: str, attr: str, new_value):
        """Like :meth:`merge`, but 10.10 and 10.1 count as the same amount."""
        old_value = getattr(self.target, attr)
        old_norm, new_norm = _strip_zeros(old_value), _strip_zeros(new_value)
        if new_norm is not None and old_norm != new_norm:
            setattr(self.target, attr, new_value)
            self.changes.append((label, old_norm, new_norm))
        return self

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def change_log(self) -> str:
        return ", ".join(f"{label} ('{old}'->'{new}')" for label, old, new in self.changes)
