"""Capacity Pool — bounded range of space identifiers."""

from pydantic import BaseModel, Field


class CapacityPool(BaseModel):
    """Operator-configured ceiling and the derived occupancy."""

    total_spaces: int = Field(ge=0, default=0)
    assigned_spaces: int = Field(ge=0, default=0)

    @property
    def available_spaces(self) -> int:
        # Never negative, even if a pull brought in more assignments than configured
        return max(0, self.total_spaces - self.assigned_spaces)

    def as_dict(self) -> dict:
        return {
            "total_spaces": self.total_spaces,
            "assigned_spaces": self.assigned_spaces,
            "available_spaces": self.available_spaces,
        }
