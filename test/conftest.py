import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def item(size: str, qty: int, price: float, cost: float = 0.0, name: str = "Mantequilla de Maní Natural"):
    from rincon.domain.models import SaleItem

    return SaleItem(product_id=f"{name}-{size}", name=name, size=size, qty=qty, unit_price=price, unit_cost=cost)


def seed_catalog(repo, stock_1kg: int = 10, stock_425: int = 20) -> tuple[str, str]:
    from rincon.services.inventory_service import InventoryService

    inventory = InventoryService(repo)
    pid_1kg = inventory.add_product("Mantequilla de Maní Natural", "1 kg", 9990, 4228, stock_1kg, sku="RF-1KG-NAT")
    pid_425 = inventory.add_product("Mantequilla de Maní Natural", "425 g", 5490, 2066, stock_425, sku="RF-425G-NAT")
    return pid_1kg, pid_425
