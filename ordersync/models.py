from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ordersync.errors import MalformedOrder

Number = int | float

# Personal columns shared by every row, in sheet order
PERSON_FIELDS = ["first", "last", "nametag", "email", "phone", "address", "city", "state", "zip", "country"]


class Person(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, frozen=True)

    first: str = ""
    last: str = ""
    nametag: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    index: int

    @property
    def full_name(self) -> str:
        return f"{self.first} {self.last}"

    def personal_fields(self) -> dict:
        return {field: getattr(self, field) for field in PERSON_FIELDS}


class Order(BaseModel):
    """One purchase, possibly covering several attendees."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True, frozen=True)

    people: list[Person]
    volunteer: list[str] = Field(default_factory=list)
    share: list[str] = Field(default_factory=list)
    comments: str = ""
    admission_quantity: Number = 0
    admission_cost: Number = 0
    donation: Number = 0
    total: Number = 0
    deposit: Number = 0
    paypal_email: str = ""
    timestamp: Number | None = None

    @property
    def purchaser(self) -> Person:
        """The attendee at index 0, who pays for the whole order."""
        purchasers = [person for person in self.people if person.index == 0]
        if not purchasers:
            raise MalformedOrder("Order has no purchaser (no person with index 0)")
        if len(purchasers) > 1:
            raise MalformedOrder(f"Order has {len(purchasers)} people with index 0")
        return purchasers[0]

    @property
    def additional_attendees(self) -> list[Person]:
        return [person for person in self.people if person.index != 0]

    @property
    def owed(self) -> Number:
        return self.total - self.deposit


class CredentialSet(BaseModel):
    """
    OAuth2 token bundle, stored in the same shape the token endpoint returns it.
    expiry_date is epoch milliseconds.
    """
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str | None = None
    expiry_date: int | None = None
    token_type: str = "Bearer"
    scope: str = ""
    id_token: str | None = None

    @classmethod
    def from_token_response(cls, token: dict) -> "CredentialSet":
        scope = token.get("scope", "")
        if isinstance(scope, (list, tuple)):
            scope = " ".join(scope)
        expires_at = token.get("expires_at")
        return cls(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token"),
            expiry_date=int(expires_at * 1000) if expires_at else None,
            token_type=token.get("token_type", "Bearer"),
            scope=scope,
            id_token=token.get("id_token"),
        )

    @property
    def expiry(self) -> datetime | None:
        # google-auth compares against naive UTC datetimes
        if self.expiry_date is None:
            return None
        return datetime.fromtimestamp(self.expiry_date / 1000, tz=timezone.utc).replace(tzinfo=None)

    def to_record(self) -> dict:
        return self.model_dump(exclude_none=True)
