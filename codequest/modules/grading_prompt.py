"""
Prompt used to grade a submission.

The rubric weights here must match the local score recomputation in
evaluation_client.compute_overall_score(). Code is embedded inside a
fence, so it must come through code_guard.sanitize() first.
"""

from typing import Any, Sequence

from langchain_core.prompts import PromptTemplate

# Literal braces in the JSON contract are doubled for PromptTemplate.
EVALUATION_SYSTEM_PROMPT = """You are a Python code evaluator for a student challenge system.
Your task is to evaluate submitted Python code against the given problem requirements.

Evaluation Criteria (each scored 0-100):
1. Correctness (50%): Does the code produce correct outputs for the test cases? Trace through the logic.
2. Code Quality (20%): Is the code well-structured, readable, and maintainable?
3. Efficiency (20%): Is the solution algorithmically efficient?
4. Style (10%): Does the code follow Python conventions (PEP8)?

You must respond with valid JSON in this exact format:
{{
  "correctness": <0-100>,
  "codeQuality": <0-100>,
  "efficiency": <0-100>,
  "style": <0-100>,
  "overallScore": <correctness*0.5 + codeQuality*0.2 + efficiency*0.2 + style*0.1>,
  "feedback": "<constructive feedback for the student, 2-3 sentences>",
  "suggestions": ["<suggestion 1>", "<suggestion 2>"],
  "testResults": [
    {{"input": "...", "expected": "...", "passed": true/false, "explanation": "..."}}
  ]
}}

Be encouraging but honest. Focus on helping students learn.
Do NOT execute the code - analyze it statically and trace through logic mentally.
IMPORTANT: Respond ONLY with the JSON object, no additional text."""

GRADING_PROMPT = PromptTemplate(
    input_variables=[
        "problem_statement",
        "evaluation_instructions",
        "test_cases",
        "code",
    ],
    template=EVALUATION_SYSTEM_PROMPT + """

## Problem Statement
{problem_statement}

## Custom Evaluation Instructions
{evaluation_instructions}

## Test Cases
{test_cases}

## Submitted Code
```python
{code}
```

Please evaluate this code and respond with the JSON format specified.""",
)


def format_test_cases(test_cases: Sequence[dict[str, Any]]) -> str:
    """Enumerate test cases as 'Test n: Input: x -> Expected Output: y'."""
    if not test_cases:
        return "No test cases provided."
    lines = []
    for index, case in enumerate(test_cases, start=1):
        lines.append(
            f"Test {index}: Input: {case.get('input', '')} -> "
            f"Expected Output: {case.get('expected_output', '')}"
        )
    return "\n".join(lines)


def build_grading_prompt(
    code: str,
    problem_statement: str,
    evaluation_instructions: str,
    test_cases: Sequence[dict[str, Any]],
) -> str:
    """
    Render the full grading prompt.

    Args:
        code: Sanitized submission code
        problem_statement: Challenge problem statement
        evaluation_instructions: Challenge-specific grading instructions
        test_cases: Challenge test cases

    Returns:
        str: Prompt text sent to the evaluation backend
    """
    return GRADING_PROMPT.format(
        problem_statement=problem_statement,
        evaluation_instructions=evaluation_instructions or "None.",
        test_cases=format_test_cases(test_cases),
        code=code,
    )
