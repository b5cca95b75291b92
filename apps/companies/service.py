from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from common.repository import Repository
from models.company import Company, CompanySite


class CompanyService:
    """
    Read-only lookups of buyer defaults and shipper sites used while deriving documents.
    """

    @staticmethod
    async def get_company(db: AsyncSession, company_id) -> Optional[Company]:
        if company_id is None:
            return None
        return await Repository(db).get(Company, company_id)

    @staticmethod
    async def find_shipper_site(db: AsyncSession, origin_code: Optional[str]) -> Optional[CompanySite]:
        """
        Shipper site for an origin code. Among sites with that exact origin the
        exporter of record wins, then the default site, then the most recently
        updated one. Without an origin match, the global default site is used.
        """
        repo = Repository(db)
        if origin_code:
            stmt = (
                repo.select(CompanySite)
                .where(CompanySite.origin_code == origin_code)
                .order_by(
                    CompanySite.exporter_of_record.desc(),
                    CompanySite.is_default.desc(),
                    CompanySite.updated_at.desc(),
                )
            )
            site = await repo.first(stmt)
            if site:
                return site

        stmt = repo.select(CompanySite).where(CompanySite.is_default.is_(True)).order_by(CompanySite.updated_at.desc())
        return await repo.first(stmt)

    @staticmethod
    def build_address(site: Optional[CompanySite]) -> Optional[str]:
        if site is None:
            return None
        direct = (site.address or "").strip()
        if direct:
            return direct
        parts = [site.address1, site.address2, site.city, site.state, site.zip, site.country]
        cleaned = [str(p).strip() for p in parts if p is not None and str(p).strip()]
        return ", ".join(cleaned) if cleaned else None
