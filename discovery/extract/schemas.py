"""Structured shapes the extraction model is asked to return."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class SourceProfile(BaseModel):
    name: str
    description: str = ""
    portfolio_url: Optional[str] = Field(default=None, description="Link to the portfolio or companies page")


class LinkEvaluation(BaseModel):
    url: str
    should_queue: bool
    reason: str = Field(default="", description="Brief explanation for the decision")
    is_canadian_headquartered: bool = False
    company_active: bool = False


class PortfolioLinkEvaluations(BaseModel):
    evaluations: List[LinkEvaluation] = Field(default_factory=list)


class OrganizationProfile(BaseModel):
    name: str
    city: Optional[str] = None
    province: Optional[str] = None
    description: str = ""
    careers_page: Optional[str] = Field(default=None, description="URL of the careers page, if one is linked")
    industry: Optional[str] = None


class JobLinkEvaluation(BaseModel):
    url: str
    should_queue: bool
    reason: str = ""
    job_title: Optional[str] = None


class JobLinkEvaluations(BaseModel):
    job_links: List[JobLinkEvaluation] = Field(default_factory=list)


class JobPosting(BaseModel):
    title: str
    company: str
    city: Optional[str] = None
    province: Optional[str] = None
    remote_ok: bool = False
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    description: str = ""
    job_board_url: Optional[str] = None
    posting_url: Optional[str] = None


class DirectoryCompany(BaseModel):
    name: str
    url: str


class DirectoryEntities(BaseModel):
    """Everything a company directory page can point at."""

    companies: List[DirectoryCompany] = Field(default_factory=list)
    directories: List[str] = Field(default_factory=list, description="Links to further company directories")
    job_boards: List[str] = Field(default_factory=list, description="Links to job boards listing startup jobs")
