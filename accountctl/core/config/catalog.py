"""
Static configuration tables — the choices an operator can pick from.

Built-in defaults cover a typical tenant; every table can be replaced
from the ``catalog:`` section of accountctl.yml.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GoogleLicense(BaseModel):
    """A Workspace SKU and the product it belongs to."""

    product_id: str
    name: str = ""


class MicrosoftLicense(BaseModel):
    sku_id: str
    sku_part_number: str
    name: str = ""
    category: str = ""


class DirectoryGroup(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    type: str = ""


def _google_licenses() -> dict[str, GoogleLicense]:
    return {
        "Google-Apps-For-Business": GoogleLicense(
            product_id="Google-Apps", name="G Suite Business"
        ),
        "1010020027": GoogleLicense(product_id="Google-Apps", name="Business Starter"),
        "1010020028": GoogleLicense(product_id="Google-Apps", name="Business Standard"),
        "1010020025": GoogleLicense(product_id="Google-Apps", name="Business Plus"),
        "1010020020": GoogleLicense(product_id="Google-Apps", name="Enterprise Plus"),
    }


def _microsoft_licenses() -> list[MicrosoftLicense]:
    return [
        MicrosoftLicense(
            sku_id="f245ecc8-75af-4f8e-b61f-27d8114de5f3",
            sku_part_number="O365_BUSINESS_PREMIUM",
            name="Microsoft 365 Business Premium",
            category="Microsoft 365",
        ),
        MicrosoftLicense(
            sku_id="cdd28e44-67e3-425e-be4c-737fab2899d3",
            sku_part_number="O365_BUSINESS",
            name="Microsoft 365 Business Basic",
            category="Microsoft 365",
        ),
        MicrosoftLicense(
            sku_id="f8a1db68-be16-40ed-86d5-cb42ce701560",
            sku_part_number="POWER_BI_PRO",
            name="Power BI Pro",
            category="Power BI",
        ),
        MicrosoftLicense(
            sku_id="1e1a282c-9c54-43a2-9310-98ef728faace",
            sku_part_number="DYN365_ENTERPRISE_SALES",
            name="Dynamics 365 Sales Enterprise",
            category="Dynamics 365",
        ),
        MicrosoftLicense(
            sku_id="b30411f5-fea1-4a59-9ad9-3db7c7ead579",
            sku_part_number="POWERAPPS_PER_USER",
            name="Power Apps Per User",
            category="Power Platform",
        ),
        MicrosoftLicense(
            sku_id="078d2b04-f1bd-4111-bbd4-b4b1b354cef4",
            sku_part_number="AAD_PREMIUM",
            name="Azure AD Premium P1",
            category="Azure AD",
        ),
    ]


class Catalog(BaseModel):
    """Lookup tables shared by the adapters, the CLI and the web API."""

    google_org_units: list[str] = Field(
        default_factory=lambda: ["/", "/Engineering", "/Sales", "/Marketing", "/Finance"]
    )
    google_licenses: dict[str, GoogleLicense] = Field(default_factory=_google_licenses)
    google_groups: list[DirectoryGroup] = Field(default_factory=list)

    microsoft_licenses: list[MicrosoftLicense] = Field(default_factory=_microsoft_licenses)
    microsoft_groups: list[DirectoryGroup] = Field(default_factory=list)
    usage_locations: list[str] = Field(
        default_factory=lambda: ["US", "GB", "CA", "AU", "DE", "FR", "JP", "IN"]
    )

    # Zoom user "type": 1 = basic, 2 = licensed
    zoom_license_types: dict[str, int] = Field(
        default_factory=lambda: {"basic": 1, "pro": 2, "business": 2}
    )
    zoom_add_ons: list[str] = Field(
        default_factory=lambda: ["webinar", "cloud_recording", "large_meeting"]
    )

    jira_product_groups: dict[str, str] = Field(
        default_factory=lambda: {
            "jira-software": "jira-software-users",
            "jira-servicemanagement": "jira-servicemanagement-users",
            "jira-product-discovery": "jira-product-discovery-users",
            "confluence": "confluence-users",
        }
    )

    def google_license(self, sku: str) -> GoogleLicense | None:
        return self.google_licenses.get(sku)

    def microsoft_license(self, sku: str) -> MicrosoftLicense | None:
        """Look up by SKU id or part number (case-insensitive)."""
        key = sku.strip().lower()
        for lic in self.microsoft_licenses:
            if key in (lic.sku_id.lower(), lic.sku_part_number.lower()):
                return lic
        return None

    def jira_group_for(self, product: str) -> str | None:
        return self.jira_product_groups.get(product)

    def summary(self) -> dict[str, int]:
        """Entry counts per table, for `accountctl config check`."""
        return {
            "google_org_units": len(self.google_org_units),
            "google_licenses": len(self.google_licenses),
            "google_groups": len(self.google_groups),
            "microsoft_licenses": len(self.microsoft_licenses),
            "microsoft_groups": len(self.microsoft_groups),
            "usage_locations": len(self.usage_locations),
            "zoom_license_types": len(self.zoom_license_types),
            "jira_product_groups": len(self.jira_product_groups),
        }
