"""Parking slot reference model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pyparking.models._base import ParkingBaseModel


def slot_label(level: str, number: str | int) -> str:
    """Label used for statistics and display, e.g. ``"LG-Intern 5"``."""
    return f"{level}-{number}"


class Slot(ParkingBaseModel):
    """A statically defined parking space with geocoordinates.

    The candidate set is small (tens of rows), loaded from the slots
    table and refetched whenever the tracking screen regains focus.
    """

    level: str = Field(validation_alias=AliasChoices("level", "slot_level"))
    number: str | int = Field(validation_alias=AliasChoices("number", "slot_number"))
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lon", "lng"))
    elevation: float = Field(default=0.0, validation_alias=AliasChoices("elevation", "altitude"))

    @field_validator("number", mode="before")
    @classmethod
    def _keep_int_numbers(cls, value: Any) -> Any:
        # Bool is an int subclass; a true/false slot number is a data error.
        if isinstance(value, bool):
            raise ValueError("slot number must be text or an integer")
        return value

    @property
    def label(self) -> str:
        return slot_label(self.level, self.number)
