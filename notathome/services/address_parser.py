"""
Free-text address helpers.

Recorded addresses are a single line typed in the field, e.g.
``"Unit 3, 12 Main Street, Springfield"``. Editing splits that line into
its parts and formats the parts back into one line.
"""

from notathome.models.contracts.address import AddressFields


def parse_address(text: str) -> AddressFields:
    """
    Split a free-text address into unit, house number, street and suburb.

    The part before the first comma is ``[Unit <n>] <house> <street...>``;
    a bare ``Unit <n>`` part followed by a comma is also accepted. The rest
    is the suburb. Anything that does not fit ends up in the street name.
    """
    parts = [part.strip() for part in text.strip().split(",") if part.strip()]
    fields = AddressFields()
    if not parts:
        return fields

    words = parts.pop(0).split()
    if words and "unit" in words[0].lower():
        fields.unit_number = words[1] if len(words) > 1 else ""
        words = words[2:]
        # "Unit 3, 12 Main Street"
        if not words and parts:
            words = parts.pop(0).split()

    if words:
        fields.house_number = words[0]
        fields.street_name = " ".join(words[1:])

    fields.suburb = ", ".join(parts)
    return fields


def format_address(fields: AddressFields) -> str:
    """Join structured address fields back into one line."""
    segments = []
    if fields.unit_number.strip():
        segments.append(f"Unit {fields.unit_number.strip()}")
    street = " ".join(
        part for part in (fields.house_number.strip(), fields.street_name.strip()) if part
    )
    if street:
        segments.append(street)
    if fields.suburb.strip():
        segments.append(fields.suburb.strip())
    return ", ".join(segments)
