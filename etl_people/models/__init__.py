"""etl_people.models -- ORM model for the ``people`` table."""

from etl_people.models.people import PersonModel

__all__ = ["PersonModel"]
