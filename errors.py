"""
Error taxonomy for the shop API.

Stores raise the specific subclass; the HTTP layer turns any ShopError into the
``{status, msg}`` envelope using ``status_code`` and ``public_message``.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def public_message(self):
        return self.message


class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ShopError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFoundError):
    default_message = "Product not found"


class CategoryNotFound(NotFoundError):
    default_message = "Category not found"


class CartItemNotFound(NotFoundError):
    default_message = "Cart item not found"


class UserNotFound(NotFoundError):
    default_message = "User not found"


class ConflictError(ShopError):
    status_code = 409
    default_message = "Conflict"


class UserExists(ConflictError):
    default_message = "Username or email already exists"


class CartChangedError(ConflictError):
    default_message = "Cart changed during checkout, please review it and try again"


class AuthError(ShopError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidCredentials(AuthError):
    default_message = "Invalid credentials"


class EmptyCartError(ShopError):
    status_code = 400
    default_message = "Cart is empty"


class EmailSendError(ShopError):
    default_message = "Failed to send email"

    @property
    def public_message(self):
        # provider responses stay in the logs
        return self.default_message


class UnexpectedError(ShopError):
    """Catch-all; the public message stays generic, the cause is chained."""
