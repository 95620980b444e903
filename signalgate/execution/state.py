"""Position state — aggregates fills per symbol.

Quantity is signed (negative is short). Adding to a position updates the
weighted-average entry price; reducing it realizes P&L against that price.
"""

from __future__ import annotations

from dataclasses import dataclass

from signalgate.execution.orders import Fill, OrderSide


@dataclass
class Position:
    symbol: str
    quantity: int = 0
    avg_entry_price: float = 0.0
    realized_pnl: float = 0.0
    multiplier: int = 1

    @property
    def is_flat(self) -> bool:
        return self.quantity == 0

    @property
    def cost_basis(self) -> float:
        return abs(self.quantity) * self.avg_entry_price * self.multiplier

    def apply_fill(self, fill: Fill) -> None:
        """Update position from a fill."""
        signed = fill.quantity if fill.side == OrderSide.BUY else -fill.quantity
        same_direction = self.quantity == 0 or (self.quantity > 0) == (signed > 0)

        if same_direction:
            total = abs(self.quantity) + fill.quantity
            self.avg_entry_price = (
                abs(self.quantity) * self.avg_entry_price + fill.quantity * fill.price
            ) / total
            self.quantity += signed
        else:
            closed = min(fill.quantity, abs(self.quantity))
            direction = 1 if self.quantity > 0 else -1
            self.realized_pnl += (
                closed * (fill.price - self.avg_entry_price) * direction * self.multiplier
            )
            self.quantity += signed
            remainder = fill.quantity - closed
            if self.quantity == 0:
                self.avg_entry_price = 0.0
            elif remainder > 0:
                # Flipped through flat: the remainder opens at the fill price.
                self.avg_entry_price = fill.price

        # Subtract commission from realized PnL
        self.realized_pnl -= fill.commission

    def market_value(self, current_price: float) -> float:
        return self.quantity * current_price * self.multiplier

    def unrealized_pnl(self, current_price: float) -> float:
        if self.quantity == 0:
            return 0.0
        return self.quantity * (current_price - self.avg_entry_price) * self.multiplier
