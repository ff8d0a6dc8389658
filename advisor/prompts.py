# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

SYSTEM_PROMPT = """
You are FinanceGuru, a knowledgeable financial advisor specialized in personal finance.
Provide helpful, accurate, and actionable advice on:
- Budgeting and expense management
- Debt management and reduction strategies
- Saving and investing fundamentals
- Retirement planning
- Tax optimization
- Financial goal setting

Keep responses concise, practical, and tailored to the user's situation.
Answer with concrete examples and specific recommendations when possible.
If you don't know something or aren't qualified to give specific advice on complex matters,
acknowledge your limitations and suggest consulting a certified financial professional.
"""

CONNECTION_TROUBLE_RESPONSE = (
    "I'm having trouble connecting to my knowledge base right now. "
    "Please try again in a moment."
)

API_KEY_ERROR_RESPONSE = "API key error. Please check your API key configuration."


def missing_key_response(provider: str, env_var: str) -> str:
    return (
        f"{provider} API key not configured. "
        f"Please set the {env_var} environment variable."
    )


def error_response(detail: str) -> str:
    return f"I'm having trouble generating a response: {detail}"


# Keyword rules for the offline responder, checked in order.
LOCAL_RESPONSES = (
    (
        ("budget", "spending", "expenses"),
        "To create an effective budget, track your income and expenses for a month, "
        "categorize spending, set realistic goals, and use the 50/30/20 rule: 50% for "
        "needs, 30% for wants, and 20% for savings and debt repayment.",
    ),
    (
        ("save", "saving", "emergency fund"),
        "For savings, aim to build an emergency fund covering 3-6 months of expenses. "
        "Automate transfers to a high-yield savings account on payday, and consider "
        "setting specific goals with deadlines to stay motivated.",
    ),
    (
        ("debt", "loan", "credit card"),
        "To tackle debt effectively, list all debts with interest rates, focus on "
        "high-interest debt first (debt avalanche) or start with small balances for "
        "quick wins (debt snowball). Always pay more than the minimum payment when "
        "possible.",
    ),
    (
        ("invest", "stock", "retirement"),
        "For beginning investors, start with your employer's 401(k) if available, "
        "especially if they match contributions. Consider low-cost index funds for "
        "diversification, and look into Roth IRAs for tax-advantaged retirement "
        "savings.",
    ),
)

LOCAL_DEFAULT_RESPONSE = (
    "I can help with budgeting, saving, debt management, and investing. Could you "
    "provide more details about your financial situation or question?"
)
