"""Instruction texts handed to the extraction model."""
from __future__ import annotations

from typing import Sequence


def numbered_links(links: Sequence[str]) -> str:
    return "\n".join(f"{index}. {link}" for index, link in enumerate(links, start=1))


SOURCE_PROFILE = (
    "The document is the home page of a venture capital firm or startup accelerator. "
    "Extract its name, a one-paragraph description and, if present, the URL of its portfolio page."
)

ORGANIZATION_PROFILE = (
    "The document is the home page of a company. Extract the company's name, the city and province "
    "of its headquarters, a short description, its industry, and the URL of its careers page if one "
    "is linked. Use null for anything that is not stated."
)

JOB_POSTING = (
    "The document is a single job posting. Extract the posting exactly as stated. Salaries are yearly "
    "amounts in whole dollars; use null when no salary is given. remote_ok is true only when remote "
    "work is explicitly allowed."
)

DIRECTORY_ENTITIES = (
    "The document is one section of a startup directory. List every company with its website URL, "
    "every link to another company directory, and every link to a job board listing startup jobs. "
    "Only include links that appear in the document."
)

PORTFOLIO_LINK_FILTER = (
    "You are filtering portfolio links for Canadian startup discovery. The document is a numbered list "
    "of links taken from an investor's portfolio page.\n\n"
    "For each link decide whether the company is headquartered in Canada and still active "
    "(not acquired, not shut down). Set should_queue only when both hold. Links that are not "
    "company sites (news articles, social profiles, product pages) are never queued. A country "
    "code domain other than .ca suggests a non-Canadian company. When unsure, do not queue. "
    "Return an evaluation for every link."
)


def job_link_filter(company_name: str) -> str:
    return (
        f"The document is the careers page of {company_name}, followed by a numbered list of the links "
        "found on it.\n\n"
        "Mark should_queue for links that lead to an individual job posting at this company, "
        "including postings hosted on an applicant tracking system. Category pages, blog posts and "
        "generic application forms are not job postings."
    )
