class ChallengeAppError(Exception):
    """Base de los errores propios de la app."""


class AuthProviderError(ChallengeAppError):
    """Garmin respondió con un status no-2xx en el handshake OAuth."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Garmin devolvió {status}: {body}")
        self.status = status
        self.body = body


class MalformedResponse(ChallengeAppError):
    """Respuesta del proveedor vacía, no parseable o sin los campos requeridos."""


class InvalidTransition(ChallengeAppError):
    """Cambio de estado de reto no permitido."""


class DuplicateKey(ChallengeAppError):
    """Clave única repetida: id externo de actividad o email de usuario."""


class NotFound(ChallengeAppError):
    pass
