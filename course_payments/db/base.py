from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """ base class for all models """

    @declared_attr.directive
    def __tablename__(cls):
        """
        table name is the lowercased model name
        """
        return cls.__name__.lower()
