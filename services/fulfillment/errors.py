# NG-HEADER: Nombre de archivo: errors.py
# NG-HEADER: Ubicación: services/fulfillment/errors.py
# NG-HEADER: Descripción: Taxonomía de errores del pipeline de fulfillment
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Errores del pipeline de fulfillment.

``str(error)`` devuelve el motivo legible (p. ej. el texto del banner del
storefront); el worker lo guarda tal cual en ``FulfillmentOrder.last_error``.
"""

from __future__ import annotations

from typing import Optional


class FulfillmentError(Exception):
    """Error base del pipeline."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


# --- Mixing -----------------------------------------------------------------

class RecipeNotFound(FulfillmentError):
    """El producto no tiene filas de receta."""

    def __init__(self, product_id: int) -> None:
        super().__init__(f"recipe not found for product {product_id}")
        self.product_id = product_id


class SupplierInvalid(FulfillmentError):
    pass


class InvalidQuantity(FulfillmentError):
    pass


class BuyerOrderNotFound(FulfillmentError):
    def __init__(self, buyer_order_id: int) -> None:
        super().__init__(f"buyer order {buyer_order_id} not found")
        self.buyer_order_id = buyer_order_id


# --- Worker / persistencia ----------------------------------------------------

class OrderContextInvalid(FulfillmentError):
    """La orden reclamada no tiene datos suficientes para ejecutarse."""


class PersistenceError(FulfillmentError):
    pass


class NotificationDeliveryFailed(FulfillmentError):
    """Entrega de notificación fallida. Nunca altera el estado de la orden."""


# --- Storefront ---------------------------------------------------------------

class StorefrontError(FulfillmentError):
    """Error de automatización del storefront.

    ``unit`` es el índice global (1..N) de la unidad que falló, si aplica.
    """

    def __init__(self, message: str = "", *, unit: Optional[int] = None) -> None:
        super().__init__(message)
        self.unit = unit


class BrowserUnavailable(StorefrontError):
    pass


class SessionNotReady(StorefrontError):
    pass


class LoginRejected(StorefrontError):
    pass


class LoginTimeout(StorefrontError):
    def __init__(self, message: str = "login timeout") -> None:
        super().__init__(message)


class ItemNotFound(StorefrontError):
    def __init__(self, external_ref: str, *, unit: Optional[int] = None) -> None:
        super().__init__(f"item {external_ref} not found", unit=unit)
        self.external_ref = external_ref


class StockExhausted(StorefrontError):
    def __init__(self, external_ref: str, *, unit: Optional[int] = None) -> None:
        super().__init__(f"stock exhausted for item {external_ref} at unit {unit}", unit=unit)
        self.external_ref = external_ref


class BuyerValidationFailed(StorefrontError):
    pass


class BuyerValidationTimeout(StorefrontError):
    def __init__(self, *, unit: Optional[int] = None) -> None:
        super().__init__(f"buyer validation timeout at unit {unit}", unit=unit)


class TransactionRejected(StorefrontError):
    pass


class NoServerResponse(StorefrontError):
    def __init__(self, *, unit: Optional[int] = None) -> None:
        super().__init__(f"no server response after confirm at unit {unit}", unit=unit)


class PlaceOrderDeadlineExceeded(StorefrontError):
    def __init__(self, budget: float, *, unit: Optional[int] = None) -> None:
        super().__init__(f"order budget of {budget:g}s exceeded at unit {unit}", unit=unit)
        self.budget = budget
