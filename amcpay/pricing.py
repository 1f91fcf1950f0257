from amcpay.errors import AmountValidationError, ValidationError

# Price per system for one year of AMC, in rupees
UNIT_PRICE = 999
CURRENCY = "INR"
# Razorpay expects amounts in paise
MINOR_UNITS = 100


def is_valid_system_count(system_count) -> bool:
    # bool is an int subclass, but True is not "one system"
    if isinstance(system_count, bool) or not isinstance(system_count, int):
        return False
    return system_count >= 1


def compute_amount(system_count) -> int:
    """Charge for ``system_count`` systems, in major units."""
    if not is_valid_system_count(system_count):
        raise ValidationError("Invalid system count")
    amount = system_count * UNIT_PRICE
    if amount % UNIT_PRICE != 0:
        raise ValidationError("Invalid system count")
    return amount


def validate_amount(amount, system_count) -> None:
    """Check a stored amount still matches its system count."""
    if not is_valid_system_count(system_count):
        raise AmountValidationError("Amount validation failed")
    expected = system_count * UNIT_PRICE
    if amount != expected or expected % UNIT_PRICE != 0:
        raise AmountValidationError("Amount validation failed")


def to_minor_units(amount: int) -> int:
    return amount * MINOR_UNITS


def from_minor_units(amount: int):
    if amount % MINOR_UNITS == 0:
        return amount // MINOR_UNITS
    return amount / MINOR_UNITS
