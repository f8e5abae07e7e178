# /flowgate/config/strings.py

# User-facing strings returned inside encrypted Flow screens. Kept in one
# place so they can be edited or localized without touching the engine.

COMPONENT_FETCH_FAILED = "Some options could not be loaded. Please try again in a moment."

CONFIGURATION_MISSING = "This form is not available right now. Please try again later."

UNKNOWN_SCREEN = "Something went wrong on this step. Please start again."

# Legacy catalogue flows
LEGACY_PRODUCT_TITLE = "{name} - Stock: {stock}"
LEGACY_PRODUCT_PRICE_TITLE = "{name} - {price}"

LEGACY_STOCK_UPDATED = "Stock updated successfully!"
LEGACY_STOCK_UPDATE_FAILED = "Could not update the stock: {error}"
LEGACY_PRICE_UPDATED = "Price updated successfully!"
LEGACY_PRICE_UPDATE_FAILED = "Could not update the price: {error}"
LEGACY_ORDER_REQUESTED = "Order request created!"
LEGACY_ORDER_DETAILS = "Quantity: {quantity}\nPriority: {priority}\nNotes: {notes}"
LEGACY_STOCK_CHANGE = "Stock changed: {old} -> {new}"
LEGACY_INVALID_ACTION = "Invalid action type"
