import logging
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from csrf import CSRF_HEADER, issue_csrf_token, verify_csrf_token
from database import SessionLocal
from models import (
    Account,
    ActivityLog,
    SavingsAllocation,
    SpendingLimit,
    Transaction,
    TransactionStatus,
)
from schemas import (
    AccountIn,
    SavingsAllocationIn,
    SpendingCheckIn,
    SpendingLimitAmountIn,
    SpendingLimitResetIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    ActivityLogService,
    EntityNotFound,
    LedgerConsistencyError,
    LedgerFilters,
    Page,
    SavingsService,
    SpendingLimitService,
    TransactionService,
    get_current_user_id,
    refresh_limits_quietly,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)):
    db = factory()
    try:
        yield db
    finally:
        db.close()


def current_user_id() -> int:
    return get_current_user_id()


def schedule_limit_check(
    background_tasks: BackgroundTasks,
    user_id: int = Depends(current_user_id),
    factory: sessionmaker = Depends(get_session_factory),
) -> None:
    if get_settings().limit_check_on_request:
        background_tasks.add_task(refresh_limits_quietly, user_id, factory)


def require_csrf(request: Request, user_id: int = Depends(current_user_id)) -> None:
    if not verify_csrf_token(request.headers.get(CSRF_HEADER, ""), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


app = FastAPI(title="Moneytrail", dependencies=[Depends(schedule_limit_check)])


@app.on_event("startup")
def startup_event():
    # Bring every window up to date once before serving requests.
    factory = app.dependency_overrides.get(get_session_factory, get_session_factory)()
    refresh_limits_quietly(get_current_user_id(), factory)


@app.exception_handler(LedgerConsistencyError)
async def ledger_consistency_handler(_request: Request, exc: LedgerConsistencyError):
    logger.critical(f"ledger_consistency_error: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, EntityNotFound) else 400
    return HTTPException(status_code=status, detail=str(exc))


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "kind": account.kind.value,
        "account_number": account.account_number,
        "balance_cents": account.balance_cents,
        "is_active": account.is_active,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "account": txn.account.name if txn.account else None,
        "type": txn.type.value,
        "status": txn.status.value,
        "amount_cents": txn.amount_cents,
        "date": txn.date.isoformat(),
        "occurred_at": txn.occurred_at.isoformat(),
        "description": txn.description,
        "notes": txn.notes,
    }


def allocation_out(allocation: SavingsAllocation) -> dict[str, object]:
    return {
        "id": allocation.id,
        "account_id": allocation.account_id,
        "account": allocation.account.name if allocation.account else None,
        "type": allocation.type.value,
        "amount_cents": allocation.amount_cents,
        "description": allocation.description,
        "date": allocation.date.isoformat(),
    }


def limit_out(limit: SpendingLimit) -> dict[str, object]:
    return {
        "type": limit.type.value,
        "amount_cents": limit.amount_cents,
        "current_spending_cents": limit.current_spending_cents,
        "last_reset": limit.last_reset.isoformat(),
    }


def activity_out(entry: ActivityLog) -> dict[str, object]:
    return {
        "action": entry.action,
        "description": entry.description,
        "created_at": entry.created_at.isoformat(),
    }


def page_out(page: Page, serializer) -> dict[str, object]:
    return {
        "items": [serializer(item) for item in page.items],
        "pagination": {
            "total": page.total,
            "page": page.page,
            "limit": page.limit,
            "total_pages": page.total_pages,
        },
    }


@app.get("/api/csrf-token")
def api_csrf_token(user_id: int = Depends(current_user_id)):
    return {"csrf_token": issue_csrf_token(user_id)}


@app.get("/api/accounts")
def api_list_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_active()]


@app.post("/api/accounts", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    return account_out(AccountService(db).create(data))


@app.post(
    "/api/accounts/default-cash", status_code=201, dependencies=[Depends(require_csrf)]
)
def api_default_cash_account(db: Session = Depends(get_db)):
    return account_out(AccountService(db).ensure_default_cash())


@app.get("/api/accounts/{account_id}")
def api_get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return account_out(AccountService(db).get(account_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", dependencies=[Depends(require_csrf)])
def api_deactivate_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).deactivate(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Account disconnected successfully"}


@app.get("/api/transactions")
def api_list_transactions(
    page: int = 1,
    limit: int = 20,
    type: Optional[str] = None,
    status: Optional[TransactionStatus] = None,
    account_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    filters = LedgerFilters(
        type=type, status=status, account_id=account_id, start=start, end=end
    )
    try:
        result = TransactionService(db).list(filters, page=page, limit=limit)
    except ValueError as exc:
        raise http_error(exc) from exc
    return page_out(result, transaction_out)


@app.get("/api/transactions/stats")
def api_transaction_stats(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    return TransactionService(db).stats(start, end)


@app.get("/api/transactions/{transaction_id}")
def api_get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return transaction_out(TransactionService(db).get(transaction_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/transactions", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.put("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_update_transaction(
    transaction_id: int, data: TransactionUpdateIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Transaction deleted successfully"}


@app.get("/api/savings/allocations")
def api_list_allocations(
    page: int = 1,
    limit: int = 20,
    type: Optional[str] = None,
    account_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    filters = LedgerFilters(type=type, account_id=account_id, start=start, end=end)
    try:
        result = SavingsService(db).list(filters, page=page, limit=limit)
    except ValueError as exc:
        raise http_error(exc) from exc
    return page_out(result, allocation_out)


@app.get("/api/savings/allocations/{allocation_id}")
def api_get_allocation(allocation_id: int, db: Session = Depends(get_db)):
    try:
        return allocation_out(SavingsService(db).get(allocation_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/api/savings/allocations", status_code=201, dependencies=[Depends(require_csrf)]
)
def api_create_allocation(data: SavingsAllocationIn, db: Session = Depends(get_db)):
    try:
        allocation = SavingsService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return allocation_out(allocation)


@app.delete(
    "/api/savings/allocations/{allocation_id}", dependencies=[Depends(require_csrf)]
)
def api_delete_allocation(allocation_id: int, db: Session = Depends(get_db)):
    try:
        SavingsService(db).delete(allocation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Savings allocation deleted successfully"}


@app.get("/api/savings/total")
def api_total_savings(db: Session = Depends(get_db)):
    return SavingsService(db).summary()


@app.get("/api/spending-limits")
def api_list_limits(db: Session = Depends(get_db)):
    return [limit_out(limit) for limit in SpendingLimitService(db).list_limits()]


@app.get("/api/spending-limits/status")
def api_limit_status(db: Session = Depends(get_db)):
    return SpendingLimitService(db).status()


@app.get("/api/spending-limits/trends")
def api_limit_trends(period: str = "monthly", db: Session = Depends(get_db)):
    return SpendingLimitService(db).trends(period)


@app.put("/api/spending-limits/{limit_type}", dependencies=[Depends(require_csrf)])
def api_update_limit(
    limit_type: str, data: SpendingLimitAmountIn, db: Session = Depends(get_db)
):
    try:
        limit, created = SpendingLimitService(db).update_amount(
            limit_type, data.amount_cents
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    verb = "created" if created else "updated"
    return {
        "message": f"{limit.type.value} spending limit {verb} successfully.",
        "limit": limit_out(limit),
    }


@app.post("/api/spending-limits/reset", dependencies=[Depends(require_csrf)])
def api_reset_limits(data: SpendingLimitResetIn, db: Session = Depends(get_db)):
    try:
        count = SpendingLimitService(db).reset(data.type)
    except ValueError as exc:
        raise http_error(exc) from exc
    scope = f"{data.type} spending limit" if data.type else "All spending limits"
    return {"message": f"{scope} reset successfully.", "reset": count}


@app.post("/api/spending-limits/check")
def api_check_limits(data: SpendingCheckIn, db: Session = Depends(get_db)):
    try:
        return SpendingLimitService(db).check(data.amount_cents, data.type)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/activity")
def api_activity(limit: int = 20, db: Session = Depends(get_db)):
    limit = min(max(limit, 1), 100)
    return [activity_out(entry) for entry in ActivityLogService(db).recent(limit)]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
