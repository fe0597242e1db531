"""Gateway adapters for WhatsApp-style messaging."""

from app.adapters.base import BaseGatewayAdapter
from app.adapters.evolution import EvolutionAdapter

__all__ = ["BaseGatewayAdapter", "EvolutionAdapter"]
