from typing import List

from insight.dtos.chat import CamelModel


class ExampleQuery(CamelModel):
    id: int
    category: str
    title: str
    query: str
    description: str


class ExamplesResponse(CamelModel):
    """Example questions with their distinct categories in first-seen order"""
    categories: List[str]
    examples: List[ExampleQuery]
    total_count: int
