"""
All LLM prompts consolidated in one place
"""
import json
from datetime import date
from typing import Any, Optional

from insight.dtos import PromptAnalysisResult


DEFAULT_SUGGESTIONS = [
    "Show me total sales for this month",
    "How many active customers do we have?",
    "What are our top performing products?",
    "Generate a weekly performance report",
    "Show customer acquisition trends",
]

# Starter questions for the chat screen, grouped by category
EXAMPLE_QUERIES = [
    {
        "id": 1,
        "category": "Sales Analysis",
        "title": "Revenue Trends",
        "query": "Show me the total revenue for each month this year",
        "description": "Analyze monthly revenue patterns and identify trends",
    },
    {
        "id": 2,
        "category": "Customer Insights",
        "title": "Customer Growth",
        "query": "How many new customers did we acquire in the last quarter?",
        "description": "Track customer acquisition and growth metrics",
    },
    {
        "id": 3,
        "category": "Product Performance",
        "title": "Top Products",
        "query": "What are our top 5 best-selling products this month?",
        "description": "Identify best-performing products by sales volume",
    },
    {
        "id": 4,
        "category": "Sales Analysis",
        "title": "Monthly Sales",
        "query": DEFAULT_SUGGESTIONS[0],
        "description": "Check how the current month is tracking",
    },
    {
        "id": 5,
        "category": "Financial Overview",
        "title": "Profit Margins",
        "query": "Calculate the average profit margin by product category",
        "description": "Analyze profitability across different product lines",
    },
    {
        "id": 6,
        "category": "Geographic Analysis",
        "title": "Regional Sales",
        "query": "Break down sales by region for the current quarter",
        "description": "Understand geographic distribution of sales",
    },
    {
        "id": 7,
        "category": "Customer Behavior",
        "title": "Purchase Frequency",
        "query": "What is the average purchase frequency of our customers?",
        "description": "Understand customer buying patterns",
    },
    {
        "id": 8,
        "category": "Inventory",
        "title": "Stock Levels",
        "query": "Which products have low stock levels (less than 10 units)?",
        "description": "Monitor inventory levels and identify restocking needs",
    },
]

FALLBACK_CONTEXT = (
    "The user is asking about business data, but I could not generate a valid SQL query. "
    "Provide a helpful general response and suggest they rephrase their question."
)


# ============================================
# PROMPT CLASSIFICATION
# ============================================

def build_classification_prompt(message: str) -> tuple[str, str]:
    """Build prompt that decides whether a message asks for business data"""
    system = """You are an expert AI assistant that analyzes user prompts to determine if they are asking for data insights, reports, or statistics.

Analyze the user prompt and respond with a JSON object containing:
{
  "isDataRelated": boolean,
  "intent": "query" | "report" | "statistics" | "general",
  "entities": string[],
  "suggestedQueries": string[],
  "confidence": number
}

- isDataRelated: true if the user asks for data, reports or statistics
- entities: business entities mentioned (customers, products, sales, campaigns, ...)
- suggestedQueries: 3-5 example data questions when the prompt is NOT data-related
- confidence: 0-1 confidence score

Examples of data-related prompts:
- "Show me sales revenue for last month"
- "How many customers do we have?"
- "What's the top selling product?"
- "Generate a report on user engagement"

If the prompt is NOT data-related, provide helpful suggestions for what they could ask about business data.
Respond with the JSON object only."""

    return system, message


# ============================================
# SQL GENERATION
# ============================================

def build_sql_generation_prompt(
    message: str,
    schema_description: str,
    analysis: PromptAnalysisResult,
    default_limit: int,
    max_limit: int,
    today: Optional[date] = None
) -> tuple[str, str]:
    """Build NL→SQL prompt (PostgreSQL dialect, JSON answer)"""
    today = today or date.today()
    entities = ", ".join(analysis.entities) or "none"

    system = f"""You are an expert PostgreSQL database analyst. Generate ACCURATE and EFFICIENT read-only SQL queries based on user requests.

## Database Schema:
{schema_description}

## CRITICAL RULES:
1. **Table & Column Names**: Use EXACT names from the schema above (case-sensitive, snake_case). Never invent tables or columns.
2. **Read-only**: Generate a single SELECT statement. NEVER modify data (no INSERT/UPDATE/DELETE/DDL).
3. **JOINs**: Always specify JOIN conditions using the foreign keys listed in the schema relationships.
4. **Date Filtering** (today is {today.isoformat()}, anchor on CURRENT_DATE):
   - "last month": col >= DATE_TRUNC('month', CURRENT_DATE - INTERVAL '1 month') AND col < DATE_TRUNC('month', CURRENT_DATE)
   - "this month": col >= DATE_TRUNC('month', CURRENT_DATE)
   - "last week": col >= DATE_TRUNC('week', CURRENT_DATE - INTERVAL '1 week') AND col < DATE_TRUNC('week', CURRENT_DATE)
   - Use created_at or updated_at based on context
5. **Aggregations**:
   - Use SUM(), COUNT(), AVG() appropriately
   - Always GROUP BY when using aggregations
   - Round decimals: ROUND(AVG(price)::numeric, 2)
   - Handle NULLs: COALESCE(column, 0)
6. **Limits**: Always add a LIMIT clause (default {default_limit}, never more than {max_limit}) unless the user explicitly asks for a different number.
7. **Sorting**: Always add ORDER BY for deterministic results (e.g. ORDER BY created_at DESC).
8. Avoid SELECT * when specific columns suffice.

## Example:
SELECT
  p.name,
  SUM(oi.quantity) AS total_sold,
  ROUND(SUM(oi.total_price)::numeric, 2) AS revenue
FROM products p
JOIN order_items oi ON oi.product_id = p.id
GROUP BY p.id, p.name
ORDER BY total_sold DESC
LIMIT 10

## Response Format (JSON only):
{{
  "sqlQuery": "SELECT ...",
  "explanation": "This query retrieves ... (1-2 sentences)",
  "confidence": 0.95,
  "tables": ["orders", "products"],
  "columns": ["total_amount", "created_at"]
}}

## User Context:
- Intent: {analysis.intent}
- Entities mentioned: {entities}
- Classification confidence: {analysis.confidence}"""

    user = f"Generate the MOST ACCURATE SQL query for: \"{message}\""

    return system, user


# ============================================
# RESPONSE SYNTHESIS
# ============================================

def build_response_prompt(
    message: str,
    context: str = "",
    sql_result: Optional[list[dict[str, Any]]] = None
) -> tuple[str, str]:
    """Build markdown narrative prompt over (optional) query results"""
    context_block = f"\nContext: {context}\n" if context else ""
    data_block = (
        f"\nData Result:\n{json.dumps(sql_result, indent=2, default=str)}\n"
        if sql_result is not None else ""
    )

    system = f"""You are a helpful business intelligence assistant. Provide clear, concise answers about business data.

IMPORTANT: Format your response in MARKDOWN with proper structure including:
- Headings (# ## ###) to organize content
- A markdown table when displaying data results
- Bullet points and numbered lists for clarity
- Bold for key figures
- A closing recommendation
{context_block}{data_block}
If data is provided, analyze it and provide insights. Always format the data in a markdown table.
Format numbers with proper units ($, %, etc.) and highlight key findings.
If the data result is empty, say so plainly and suggest how to broaden the question.

Example response format:
# Analysis Results

## Key Findings
- **Total Revenue**: $X,XXX

## Data Summary
| Metric | Value |
|--------|-------|
| Revenue | $X,XXX |

## Recommendations
> Based on the analysis, I recommend..."""

    return system, message
