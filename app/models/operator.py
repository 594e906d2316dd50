from sqlmodel import Field, SQLModel


class OperatorBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str | None = None
    is_active: bool = True


class Operator(OperatorBase, table=True):
    """Garage staff allowed to manage the calendar and every appointment."""

    __tablename__ = "operators"
    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str


class OperatorCreate(SQLModel):
    email: str
    password: str
    full_name: str | None = None


class OperatorPublic(SQLModel):
    id: int
    email: str
    full_name: str | None = None
    is_active: bool
