from sqlalchemy.orm import as_declarative, declared_attr


@as_declarative()
class Base:
    # Table name is the lowercased class name, pluralized ("Feature" -> "features")
    @declared_attr
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"
