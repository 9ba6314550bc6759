"""
Failure taxonomy for the insight engine.

Every failure carries a short, human-readable ``message`` that can be shown
to the seller as-is. None of them are retried.
"""
from typing import List, Optional


class KellyError(Exception):
    """Base class for failures surfaced to the caller"""

    default_message = "Une erreur est survenue"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class GenerationFailure(KellyError):
    """The content service failed or answered with something unusable"""

    QUOTA = "quota"
    AUTH = "auth"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"

    MESSAGES = {
        QUOTA: "Quota du service IA dépassé. Réessaie plus tard.",
        AUTH: "Clé API du service IA invalide ou manquante.",
        MALFORMED: "Réponse IA illisible. Réessaie dans quelques instants.",
        UNAVAILABLE: "Impossible de générer les recommandations. Réessaie dans quelques instants.",
    }

    def __init__(self, reason: str = UNAVAILABLE, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.reason = reason
        super().__init__(message or self.MESSAGES.get(reason, self.MESSAGES[self.UNAVAILABLE]), detail=detail)


class StorageFailure(KellyError):
    """A read or write against the persistent store failed"""

    default_message = "Impossible d'accéder aux données. Réessaie dans quelques instants."


class ValidationFailure(KellyError):
    """The request was rejected before any write"""

    default_message = "Action impossible avec ces articles."


class PartialApplyFailure(KellyError):
    """A batch write stopped partway; already-applied items are not rolled back"""

    def __init__(self, applied_ids: List[str], failed_id: str, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.applied_ids = list(applied_ids)
        self.failed_id = failed_id
        super().__init__(
            message or f"Mise à jour interrompue : {len(self.applied_ids)} article(s) modifié(s) avant l'erreur.",
            detail=detail,
        )
