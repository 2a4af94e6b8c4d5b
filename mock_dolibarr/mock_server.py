# mock_dolibarr/mock_server.py
from fastapi import FastAPI, APIRouter, HTTPException, Header, Depends, Query, Body
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple
import itertools
import uvicorn

app = FastAPI(title="Mock Dolibarr API", version="1.0")
router = APIRouter(prefix="/api/index.php")

DOLIBARR_VERSION = "18.0.4"
api_keys = ["test-dolibarr-key", "demo-dolibarr-key"]

# Хранилище данных в памяти
thirdparties_db: Dict[int, Dict[str, Any]] = {}
products_db: Dict[int, Dict[str, Any]] = {}
orders_db: Dict[int, Dict[str, Any]] = {}
stockmovements_db: List[Dict[str, Any]] = []
warehouses_db: List[Dict[str, Any]] = []
payment_types_db: List[Dict[str, Any]] = []
bankaccounts_db: List[Dict[str, Any]] = []

# Журнал вызовов для проверок в тестах: (метод, ресурс, тело)
calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []

# Принудительные ошибки: (метод, ресурс) -> (статус, сообщение)
failures: Dict[Tuple[str, str], Tuple[int, Optional[str]]] = {}

_ids = itertools.count(1)

class DolibarrApiException(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message

@app.exception_handler(DolibarrApiException)
async def dolibarr_exception_handler(request, exc: DolibarrApiException):
    # Формат ошибок REST API Dolibarr
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.status_code, "message": exc.message}}
    )

def init_test_data():
    warehouses_db.extend([
        {"id": "1", "ref": "WH-MAIN", "label": "Main warehouse", "description": "", "town": "Paris", "country": "FR"},
        {"id": "2", "ref": "WH-EU", "label": "EU warehouse", "description": "", "town": "Berlin", "country": "DE"},
    ])
    payment_types_db.extend([
        {"id": "2", "code": "VIR", "label": "Bank transfer", "type": "2", "module": None},
        {"id": "6", "code": "CB", "label": "Credit card", "type": "2", "module": None},
    ])
    bankaccounts_db.append(
        {"id": "1", "ref": "BANK", "label": "Main account", "bank": "Mock Bank",
         "account_number": "000123", "currency_code": "EUR", "active": "1"}
    )

def reset_state():
    """Очистить данные и журнал вызовов (между тестами)"""
    global _ids
    for store in (thirdparties_db, products_db, orders_db):
        store.clear()
    for items in (stockmovements_db, warehouses_db, payment_types_db, bankaccounts_db, calls):
        items.clear()
    failures.clear()
    _ids = itertools.count(1)
    init_test_data()

def inject_failure(method: str, resource: str, status_code: int, message: Optional[str] = None):
    """Следующие запросы (метод, ресурс) завершатся ошибкой"""
    failures[(method.upper(), resource)] = (status_code, message)

def _record(method: str, resource: str, body: Optional[Dict[str, Any]] = None):
    calls.append((method, resource, body))
    failure = failures.get((method, resource))
    if failure:
        status_code, message = failure
        if message is None:
            raise HTTPException(status_code=status_code, detail="Mock failure")
        raise DolibarrApiException(status_code, message)

# Dependency для проверки API ключа
def verify_api_key(dolapikey: Optional[str] = Header(None, alias="DOLAPIKEY")):
    if not dolapikey or dolapikey not in api_keys:
        raise HTTPException(status_code=401, detail="Invalid API Key")
    return dolapikey

def _page(items: List[Dict[str, Any]], limit: int, page: int, what: str) -> List[Dict[str, Any]]:
    start = page * limit
    result = items[start:start + limit]
    if not result:
        # Dolibarr отвечает 404 на пустой список
        raise DolibarrApiException(404, f"No {what} found")
    return result

def _get(store: Dict[int, Dict[str, Any]], item_id: int, what: str) -> Dict[str, Any]:
    if item_id not in store:
        raise DolibarrApiException(404, f"{what} not found")
    return store[item_id]

def _update(item: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in data.items():
        if key != "id":
            item[key] = value
    item["tms"] = int(datetime.now().timestamp())
    return item

@router.get("/status")
async def status(api_key: str = Depends(verify_api_key)):
    _record("GET", "status")
    return {"success": {"code": 200, "dolibarr_version": DOLIBARR_VERSION, "access_locked": "0"}}

@router.get("/warehouses")
async def get_warehouses(api_key: str = Depends(verify_api_key)):
    _record("GET", "warehouses")
    return warehouses_db

@router.get("/setup/dictionary/payment_types")
async def get_payment_types(lang: str = Query("en_US"), api_key: str = Depends(verify_api_key)):
    _record("GET", "payment_types")
    return payment_types_db

@router.get("/bankaccounts")
async def get_bank_accounts(api_key: str = Depends(verify_api_key)):
    _record("GET", "bankaccounts")
    return bankaccounts_db

# Контрагенты

@router.get("/thirdparties")
async def list_thirdparties(
    limit: int = Query(100, ge=1),
    page: int = Query(0, ge=0),
    api_key: str = Depends(verify_api_key)
):
    _record("GET", "thirdparties")
    return _page(list(thirdparties_db.values()), limit, page, "thirdparty")

@router.post("/thirdparties")
async def create_thirdparty(data: Dict[str, Any] = Body(...), api_key: str = Depends(verify_api_key)):
    _record("POST", "thirdparties", data)
    if not data.get("name"):
        raise DolibarrApiException(400, "name field missing")
    thirdparty_id = next(_ids)
    thirdparties_db[thirdparty_id] = {**data, "id": str(thirdparty_id)}
    # Dolibarr возвращает голый ID
    return thirdparty_id

@router.get("/thirdparties/{thirdparty_id}")
async def get_thirdparty(thirdparty_id: int, api_key: str = Depends(verify_api_key)):
    _record("GET", "thirdparties")
    return _get(thirdparties_db, thirdparty_id, "Thirdparty")

@router.put("/thirdparties/{thirdparty_id}")
async def update_thirdparty(
    thirdparty_id: int,
    data: Dict[str, Any] = Body(...),
    api_key: str = Depends(verify_api_key)
):
    _record("PUT", "thirdparties", data)
    return _update(_get(thirdparties_db, thirdparty_id, "Thirdparty"), data)

# Товары

@router.get("/products")
async def list_products(
    limit: int = Query(100, ge=1),
    page: int = Query(0, ge=0),
    includestockdata: int = Query(0),
    api_key: str = Depends(verify_api_key)
):
    _record("GET", "products")
    items = list(products_db.values())
    if not includestockdata:
        items = [{k: v for k, v in item.items() if k != "stock_reel"} for item in items]
    return _page(items, limit, page, "product")

@router.post("/products")
async def create_product(data: Dict[str, Any] = Body(...), api_key: str = Depends(verify_api_key)):
    _record("POST", "products", data)
    if not data.get("ref"):
        raise DolibarrApiException(400, "ref field missing")
    if any(p.get("ref") == data["ref"] for p in products_db.values()):
        raise DolibarrApiException(500, f"Error: ref {data['ref']} already exists")
    product_id = next(_ids)
    products_db[product_id] = {
        "price": "0.00000000",
        "stock_reel": "0",
        **data,
        "id": str(product_id),
    }
    return product_id

@router.get("/products/{product_id}")
async def get_product(product_id: int, api_key: str = Depends(verify_api_key)):
    _record("GET", "products")
    return _get(products_db, product_id, "Product")

@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    data: Dict[str, Any] = Body(...),
    api_key: str = Depends(verify_api_key)
):
    _record("PUT", "products", data)
    product = _get(products_db, product_id, "Product")
    data = {k: v for k, v in data.items() if k != "stock_reel"}
    return _update(product, data)

@router.get("/products/{product_id}/stock")
async def get_product_stock(
    product_id: int,
    selected_warehouse_id: Optional[int] = Query(None),
    api_key: str = Depends(verify_api_key)
):
    _record("GET", "products_stock")
    product = _get(products_db, product_id, "Product")
    by_warehouse: Dict[str, float] = {}
    for movement in stockmovements_db:
        if movement["product_id"] == product_id:
            key = str(movement["warehouse_id"])
            by_warehouse[key] = by_warehouse.get(key, 0) + movement["qty"]
    if selected_warehouse_id is not None:
        by_warehouse = {k: v for k, v in by_warehouse.items() if k == str(selected_warehouse_id)}
    return {
        "stock_warehouses": {k: {"real": v} for k, v in by_warehouse.items()},
        "stock_reel": product.get("stock_reel"),
    }

@router.post("/stockmovements")
async def create_stock_movement(data: Dict[str, Any] = Body(...), api_key: str = Depends(verify_api_key)):
    _record("POST", "stockmovements", data)
    product = _get(products_db, int(data.get("product_id") or 0), "Product")
    if not data.get("warehouse_id"):
        raise DolibarrApiException(400, "warehouse_id field missing")
    qty = float(data.get("qty") or 0)
    product["stock_reel"] = str(float(product.get("stock_reel") or 0) + qty)
    movement_id = next(_ids)
    stockmovements_db.append({
        "id": movement_id,
        "product_id": int(data["product_id"]),
        "warehouse_id": data["warehouse_id"],
        "qty": qty,
        "label": data.get("label", ""),
    })
    return movement_id

# Заказы

@router.get("/orders")
async def list_orders(
    limit: int = Query(100, ge=1),
    page: int = Query(0, ge=0),
    api_key: str = Depends(verify_api_key)
):
    _record("GET", "orders")
    return _page(list(orders_db.values()), limit, page, "order")

@router.post("/orders")
async def create_order(data: Dict[str, Any] = Body(...), api_key: str = Depends(verify_api_key)):
    _record("POST", "orders", data)
    socid = int(data.get("socid") or 0)
    if socid not in thirdparties_db:
        raise DolibarrApiException(400, "Thirdparty not found")
    order_id = next(_ids)
    orders_db[order_id] = {
        **data,
        "id": str(order_id),
        "ref": f"(PROV{order_id})",
        "statut": "0",
    }
    return order_id

@router.get("/orders/{order_id}")
async def get_order(order_id: int, api_key: str = Depends(verify_api_key)):
    _record("GET", "orders")
    return _get(orders_db, order_id, "Order")

@router.put("/orders/{order_id}")
async def update_order(
    order_id: int,
    data: Dict[str, Any] = Body(...),
    api_key: str = Depends(verify_api_key)
):
    _record("PUT", "orders", data)
    return _update(_get(orders_db, order_id, "Order"), data)

app.include_router(router)
init_test_data()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
