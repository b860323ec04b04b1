import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Header,
    HTTPException,
    UploadFile,
)
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, session_scope
from notifications import ThresholdChecker
from receipts import (
    ReceiptExtractionService,
    ReceiptProcessingError,
    ReceiptValidationError,
)
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetSummaryOut,
    BudgetUpdate,
    NotificationPreferencesIn,
    TransactionIn,
    TransactionOut,
)
from services import (
    BudgetNotFound,
    BudgetService,
    DuplicateBudget,
    SpendingService,
    TransactionNotFound,
    TransactionService,
    UserNotFound,
    UserService,
    get_current_user_id,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Spendwise")

RETRY_SUGGESTION = "Please try uploading the receipt again in a few minutes."


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


def check_user_budgets(user_id: int) -> None:
    with session_scope() as session:
        ThresholdChecker(session).check_user(user_id)


def get_alert_checker() -> Callable[[int], None]:
    return check_user_budgets


def get_receipt_service(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
) -> ReceiptExtractionService:
    return ReceiptExtractionService(db, user_id)


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return BudgetService(db, user_id).list_with_status()


@app.get("/budgets/summary", response_model=BudgetSummaryOut)
def budget_summary(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return BudgetService(db, user_id).summary()


@app.get("/budgets/categories", response_model=list[str])
def budget_categories(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return SpendingService(db, user_id).categories()


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.create(payload)
    except DuplicateBudget as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return service.to_out(budget)


@app.put("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.update(budget_id, payload)
    except BudgetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return service.to_out(budget)


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        BudgetService(db, user_id).deactivate(budget_id)
    except BudgetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    alert_checker: Callable[[int], None] = Depends(get_alert_checker),
):
    txn = TransactionService(db, user_id).create(payload)
    db.commit()
    db.refresh(txn)
    background_tasks.add_task(alert_checker, user_id)
    return txn


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).soft_delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Transaction deleted successfully"}


@app.put("/users/me/notifications")
def update_notification_preferences(
    payload: NotificationPreferencesIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        user = UserService(db).update_preferences(user_id, payload)
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "enabled": user.notifications_enabled,
        "budget_alerts": user.budget_alerts_enabled,
        "weekly_reports": user.weekly_reports_enabled,
    }


@app.post("/receipt-upload")
def receipt_upload(
    background_tasks: BackgroundTasks,
    receipt: Optional[UploadFile] = File(None),
    service: ReceiptExtractionService = Depends(get_receipt_service),
    alert_checker: Callable[[int], None] = Depends(get_alert_checker),
):
    if receipt is None or not receipt.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    upload_dir = get_settings().upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(receipt.filename).suffix.lower()
    stored = upload_dir / f"receipt_{os.urandom(16).hex()}{suffix}"
    try:
        with stored.open("wb") as out:
            shutil.copyfileobj(receipt.file, out)
    except OSError as exc:
        stored.unlink(missing_ok=True)
        raise HTTPException(status_code=500, detail="Could not store upload") from exc

    try:
        result = service.process_upload(stored, receipt.filename)
    except ReceiptValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ReceiptProcessingError as exc:
        logger.error(f"receipt_failed: file={receipt.filename} error={exc}")
        return JSONResponse(
            status_code=500,
            content={"message": str(exc), "suggestion": RETRY_SUGGESTION},
        )
    except Exception:
        logger.exception(f"receipt_failed: file={receipt.filename}")
        return JSONResponse(
            status_code=500,
            content={"message": "Receipt processing failed", "suggestion": RETRY_SUGGESTION},
        )

    if result.status == "none_detected":
        return {"message": result.message}
    if result.status == "fallback":
        return {
            "message": result.message,
            "transactions": result.transactions,
            "ocrText": result.ocr_text,
            "processingMethod": result.processing_method,
        }

    background_tasks.add_task(alert_checker, service.user_id)
    items = [
        TransactionOut.model_validate(txn).model_dump(mode="json")
        for txn in result.transactions
    ]
    return items[0] if len(items) == 1 else items


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
