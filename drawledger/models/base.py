from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase

from drawledger.db.metadata import metadata_obj
from .id_type import MONEY_TYPE


class Base(DeclarativeBase):
    """Declarative base sharing the naming-convention metadata.

    ``Decimal`` annotations map to the fixed-point money column type.
    """

    metadata = metadata_obj
    type_annotation_map = {Decimal: MONEY_TYPE}
