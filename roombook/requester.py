from typing import NamedTuple, Optional

from .errors import ValidationError


class Requester(NamedTuple):
    """Who a booking is for: a free-text name, a squad, or both."""

    booker_name: Optional[str] = None
    squad_id: Optional[int] = None

    @classmethod
    def of(cls, booking) -> "Requester":
        return cls(getattr(booking, "booker_name", None), getattr(booking, "squad_id", None))

    def validate(self) -> "Requester":
        name = (self.booker_name or "").strip() or None
        if name is None and self.squad_id is None:
            raise ValidationError("A booker name or squad is required")
        return Requester(name, self.squad_id)
