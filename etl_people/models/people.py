"""
ORM model for the ``people`` table loaded by the file-to-database step.

The step writes through a plain INSERT statement, not through this model;
the model owns the table definition so ``create_tables()`` can create it.
"""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from etl_kernel.db.base import Base


class PersonModel(Base):
    """A person loaded from the input file."""

    __tablename__ = "people"

    # Integer (not BigInteger) so SQLite aliases the rowid and autoincrements.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    first_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    def __repr__(self) -> str:
        return f"<PersonModel {self.id} {self.first_name} age={self.age}>"
