"""Request validators for the application server."""
from abyss.errors import ErrorCode, GameError, MalformedInput
from abyss.protocol import SpinRequest, StartSessionRequest


def validate_items(request: StartSessionRequest) -> None:
    """
    Validate owned item quantities.

    Raises MALFORMED_INPUT on negative quantities or repeated item ids.
    """
    seen: set[int] = set()
    for item in request.items:
        if item.quantity < 0:
            raise MalformedInput(f"Item {item.itemId} has negative quantity {item.quantity}.")
        if item.itemId in seen:
            raise MalformedInput(f"Item {item.itemId} listed more than once.")
        seen.add(item.itemId)


def validate_spin_request(request: SpinRequest) -> None:
    """Raises INVALID_REQUEST on an empty clientRequestId."""
    if not request.clientRequestId.strip():
        raise GameError(ErrorCode.INVALID_REQUEST, "clientRequestId must not be empty.")
