"""Webhook command handlers."""

from app.commands.webhooks.evolution_command import EvolutionWebhookCommand

__all__ = ["EvolutionWebhookCommand"]
