"""Category configuration shared by the test suite."""

CATEGORY_CONFIG = {
    "expenses": [
        {"name": "Groceries", "keywords": ["woolworths", "coles", "aldi"], "color": "#4caf50"},
        {"name": "Dining", "keywords": ["cafe", "restaurant", "mcdonald's"]},
        {"name": "Transport", "keywords": ["uber", "lyft", "fuel"]},
        {"name": "Household", "keywords": ["bunnings", "ikea"]},
        {"name": "Cash", "keywords": ["atm withdrawal"]},
        {"name": "Shopping", "keywords": ["amazon", "target"]},
    ],
    "income": [
        {"name": "Salary", "keywords": ["payroll", "salary"]},
        {"name": "Refunds", "keywords": ["refund"]},
    ],
}
