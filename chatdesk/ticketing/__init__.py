from .models import TICKET_STATUSES, CreateTicketParams, Ticket, TicketStatus, UpdateTicketParams
from .service import InMemoryTicketingService, TicketingService, TicketNotFoundError

__all__ = [
    "CreateTicketParams",
    "InMemoryTicketingService",
    "TICKET_STATUSES",
    "Ticket",
    "TicketNotFoundError",
    "TicketStatus",
    "TicketingService",
    "UpdateTicketParams",
]
