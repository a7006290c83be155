import json
from collections.abc import Sequence
from datetime import date

from statement_ingest.domain.comparable import ComparableSummary
from statement_ingest.models import Account, Category, DuplicateLink

MAX_HEURISTIC_HINTS = 25


def build_category_context(categories: Sequence[Category]) -> str:
    return "\n".join(f"- {cat.id}: {cat.name} ({cat.type})" for cat in categories)


def build_account_context(accounts: Sequence[Account]) -> str:
    return "\n".join(f"- {acc.id}: {acc.name} ({acc.type})" for acc in accounts)


def build_extraction_prompt(
    categories: Sequence[Category],
    accounts: Sequence[Account],
    page_number: int | None = None,
    total_pages: int | None = None,
    *,
    today: date | None = None,
) -> str:
    current_year = (today or date.today()).year
    category_context = build_category_context(categories)
    account_context = build_account_context(accounts)
    page_info = f" (Page {page_number} of {total_pages})" if page_number and total_pages else ""

    return f"""You are analyzing a bank statement{page_info}. Extract all transactions from the statement.

The current calendar year is {current_year}. If the document does not explicitly display a year for a date (for example it only shows "JAN 12"), assume the year is {current_year}. Only use a different year when the document clearly states it.

For each transaction, you MUST extract:
1. Whether it is an EXPENSE (money going out), INCOME (money coming in) or TRANSFER (money moving between the user's own accounts)
2. The amount (always a positive number)
3. The date (ISO format YYYY-MM-DD)
4. The description/merchant name - REQUIRED FOR EVERY TRANSACTION
5. The matching account from the user's existing accounts, based on bank name, account type or account number
6. The matching category from the user's existing categories

Available accounts:
{account_context or "No accounts available - leave fromAccountId/toAccountId out"}

Available categories:
{category_context or "No categories available - leave categoryId out"}

RULES:
- Every transaction MUST have the complete description text exactly as printed, including store numbers, references and memo text. Never truncate or abbreviate it.
- Match categories liberally on keywords (coffee/restaurant -> food, salary/payroll -> income, fuel -> transport, utility -> utilities). Only use ids from the list above.
- EXPENSE: set fromAccountId. INCOME: set toAccountId. TRANSFER: set both and no categoryId.
- If no account matches clearly, use the checking account or the account with the most similar bank name.
- Ignore header rows, balances, totals and other non-transaction lines.

Respond with a JSON object of the form:
{{"transactions": [{{"type": "EXPENSE", "amount": 12.5, "occurredAt": "YYYY-MM-DD", "description": "...", "note": "...", "categoryId": "...", "fromAccountId": "...", "toAccountId": "..."}}]}}
Omit optional fields you cannot fill."""


DUPLICATE_REVIEW_INSTRUCTIONS = (
    'Review the following transactions extracted from the same statement upload. Each entry '
    'includes an "id" field and a "source" that is either "new" (just extracted) or "existing" '
    '(previously stored). Identify entries that appear to be duplicates of another transaction '
    '(identical or nearly identical amount, date, and description). Only flag a transaction if '
    'there is strong evidence it is a duplicate of another entry. Respond with a JSON object '
    'containing an array named "duplicates" where every object contains "duplicateId" (must be '
    'one of the new transactions), "originalId" (the entry it matches, prefer existing entries or '
    'earlier new ones), and an optional "reason".'
)


def build_duplicate_review_input(
    summaries: Sequence[ComparableSummary],
    hints: Sequence[DuplicateLink],
) -> str:
    if hints:
        hint_text = json.dumps(
            [hint.model_dump(by_alias=True) for hint in hints[:MAX_HEURISTIC_HINTS]],
            indent=2,
        )
    else:
        hint_text = "No heuristic duplicate pairs detected."

    transactions_text = json.dumps([summary.to_payload() for summary in summaries], indent=2)
    return (
        f"Heuristic duplicate candidates (for additional context):\n{hint_text}\n\n"
        f"Transactions:\n{transactions_text}"
    )
