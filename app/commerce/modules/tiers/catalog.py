"""
Static tier catalog.

Seeds the subscription_tiers/tier_features tables and serves as the fallback
when the database has no row for a tier (or the lookup fails). Features are
cumulative: a tier also holds every feature of the tiers in its hierarchy.
"""
from __future__ import annotations

from typing import Any

DEFAULT_TIER = "starter"
DEFAULT_REQUIRED_TIER = "professional"
UPGRADE_URL = "/settings/subscription"

TIER_FEATURES: dict[str, tuple[str, ...]] = {
    "google_only": (
        "google_shopping",
        "google_merchant_center",
        "basic_product_pages",
        "qr_codes_512",
        "performance_analytics",
    ),
    "starter": (
        "storefront",
        "product_search",
        "mobile_responsive",
        "enhanced_seo",
        "basic_categories",
        "category_quick_start",
    ),
    "professional": (
        "quick_start_wizard",
        "product_scanning",
        "gbp_integration",
        "custom_branding",
        "business_logo",
        "qr_codes_1024",
        "image_gallery_5",
        "interactive_maps",
        "privacy_mode",
        "custom_marketing_copy",
        "priority_support",
    ),
    "enterprise": (
        "unlimited_skus",
        "white_label",
        "custom_domain",
        "qr_codes_2048",
        "image_gallery_10",
        "api_access",
        "advanced_analytics",
        "dedicated_account_manager",
        "sla_guarantee",
        "custom_integrations",
    ),
    "organization": (
        "propagation_products",
        "propagation_categories",
        "propagation_gbp_sync",
        "propagation_hours",
        "propagation_profile",
        "propagation_flags",
        "propagation_roles",
        "propagation_brand",
        "organization_dashboard",
        "hero_location",
        "strategic_testing",
        "unlimited_locations",
        "shared_sku_pool",
        "centralized_control",
        "api_access",
    ),
    "chain_starter": (
        "storefront",
        "product_search",
        "mobile_responsive",
        "enhanced_seo",
        "multi_location_5",
    ),
    "chain_professional": (
        "quick_start_wizard",
        "product_scanning",
        "gbp_integration",
        "custom_branding",
        "qr_codes_1024",
        "image_gallery_5",
        "multi_location_25",
        "basic_propagation",
    ),
    "chain_enterprise": (
        "unlimited_skus",
        "white_label",
        "custom_domain",
        "qr_codes_2048",
        "image_gallery_10",
        "api_access",
        "unlimited_locations",
        "advanced_propagation",
        "dedicated_account_manager",
    ),
}

# Tiers whose features each tier inherits. "trial" is a subscription status, not a tier.
TIER_HIERARCHY: dict[str, tuple[str, ...]] = {
    "google_only": (),
    "starter": ("google_only",),
    "professional": ("starter", "google_only"),
    "enterprise": ("professional", "starter", "google_only"),
    "organization": ("professional", "starter", "google_only"),
    "chain_starter": ("starter", "google_only"),
    "chain_professional": ("professional", "starter", "google_only"),
    "chain_enterprise": ("enterprise", "professional", "starter", "google_only"),
}

# Minimum tier that unlocks a feature.
FEATURE_TIER_MAP: dict[str, str] = {
    "storefront": "starter",
    "product_search": "starter",
    "mobile_responsive": "starter",
    "enhanced_seo": "starter",
    "category_quick_start": "starter",
    "quick_start_wizard": "professional",
    "product_scanning": "professional",
    "gbp_integration": "professional",
    "custom_branding": "professional",
    "qr_codes_1024": "professional",
    "image_gallery_5": "professional",
    "white_label": "enterprise",
    "custom_domain": "enterprise",
    "qr_codes_2048": "enterprise",
    "image_gallery_10": "enterprise",
    "api_access": "enterprise",
    "advanced_analytics": "enterprise",
    "propagation_products": "organization",
    "propagation_categories": "organization",
    "propagation_gbp_sync": "organization",
    "organization_dashboard": "organization",
    "hero_location": "organization",
    "strategic_testing": "organization",
}

TIER_DISPLAY_NAMES: dict[str, str] = {
    "google_only": "Google-Only",
    "starter": "Starter",
    "professional": "Professional",
    "enterprise": "Enterprise",
    "organization": "Organization",
    "chain_starter": "Chain Starter",
    "chain_professional": "Chain Professional",
    "chain_enterprise": "Chain Enterprise",
}

# Monthly price, whole USD.
TIER_PRICING: dict[str, int] = {
    "google_only": 29,
    "starter": 49,
    "professional": 499,
    "enterprise": 999,
    "organization": 999,
    "chain_starter": 199,
    "chain_professional": 1999,
    "chain_enterprise": 4999,
}

# None = unlimited
TIER_SKU_LIMITS: dict[str, int | None] = {
    "google_only": 250,
    "starter": 500,
    "professional": 5000,
    "enterprise": None,
    "organization": None,
    "chain_starter": 500,
    "chain_professional": 5000,
    "chain_enterprise": None,
}

TIER_TYPES: dict[str, str] = {
    "organization": "organization",
    "chain_starter": "organization",
    "chain_professional": "organization",
    "chain_enterprise": "organization",
}

_ALL_BUSINESS_TYPES = ("grocery", "fashion", "electronics", "general")

TIER_FEATURE_LIMITS: dict[str, dict[str, dict[str, Any]]] = {
    "starter": {
        "category_quick_start": {"max_categories": 15, "rate_limit_days": 7, "business_types": _ALL_BUSINESS_TYPES},
    },
    "professional": {
        "quick_start_wizard": {"max_products": 100, "rate_limit_days": 1, "scenarios": _ALL_BUSINESS_TYPES},
        "category_quick_start": {"max_categories": 30, "rate_limit_days": 1, "business_types": _ALL_BUSINESS_TYPES},
    },
    "enterprise": {
        "quick_start_wizard": {"max_products": 100, "rate_limit_days": 1, "scenarios": _ALL_BUSINESS_TYPES},
        "category_quick_start": {"max_categories": 30, "rate_limit_days": 1, "business_types": _ALL_BUSINESS_TYPES},
    },
}

FEATURE_DISPLAY_NAMES: dict[str, str] = {
    "storefront": "Public Storefront",
    "quick_start_wizard": "Product Quick Start",
    "category_quick_start": "Category Quick Start",
    "product_scanning": "Product Scanning",
    "gbp_integration": "Google Business Profile Integration",
    "api_access": "API Access",
    "white_label": "White Label Branding",
    "custom_domain": "Custom Domain",
    "advanced_analytics": "Advanced Analytics",
    "product_search": "Product Search",
    "basic_product_pages": "Basic Product Pages",
    "image_gallery_5": "5-Image Gallery",
    "image_gallery_10": "10-Image Gallery",
    "custom_branding": "Custom Branding",
    "business_logo": "Business Logo",
    "custom_marketing_copy": "Custom Marketing Copy",
    "basic_categories": "Basic Categories",
    "qr_codes_512": "QR Codes (512px)",
    "qr_codes_1024": "QR Codes (1024px)",
    "qr_codes_2048": "QR Codes (2048px)",
    "google_shopping": "Google Shopping Feed",
    "google_merchant_center": "Google Merchant Center",
    "mobile_responsive": "Mobile-Responsive Design",
    "enhanced_seo": "Enhanced SEO",
    "interactive_maps": "Interactive Maps",
    "privacy_mode": "Privacy Mode",
    "priority_support": "Priority Support",
    "dedicated_account_manager": "Dedicated Account Manager",
    "sla_guarantee": "SLA Guarantee",
    "performance_analytics": "Performance Analytics",
    "unlimited_skus": "Unlimited SKUs",
    "custom_integrations": "Custom Integrations",
    "multi_location_5": "5 Locations",
    "multi_location_25": "25 Locations",
    "unlimited_locations": "Unlimited Locations",
    "propagation_products": "Product Propagation",
    "propagation_categories": "Category Propagation",
    "propagation_gbp_sync": "GBP Sync Propagation",
    "propagation_hours": "Hours Propagation",
    "propagation_profile": "Profile Propagation",
    "propagation_flags": "Flag Propagation",
    "propagation_roles": "Role Propagation",
    "propagation_brand": "Brand Propagation",
    "organization_dashboard": "Organization Dashboard",
    "hero_location": "Hero Location",
    "strategic_testing": "Strategic Testing",
    "shared_sku_pool": "Shared SKU Pool",
    "centralized_control": "Centralized Control",
    "basic_propagation": "Basic Propagation",
    "advanced_propagation": "Advanced Propagation",
}


def known_tiers() -> tuple[str, ...]:
    return tuple(TIER_FEATURES)


def all_feature_keys() -> list[str]:
    keys: set[str] = set(FEATURE_TIER_MAP)
    for features in TIER_FEATURES.values():
        keys.update(features)
    return sorted(keys)


def check_tier_feature(tier: str, feature: str) -> bool:
    """Check if a tier (or any tier it inherits from) grants a feature."""
    if feature in TIER_FEATURES.get(tier, ()):
        return True
    for inherited in TIER_HIERARCHY.get(tier, ()):
        if feature in TIER_FEATURES.get(inherited, ()):
            return True
    return False


def get_tier_features(tier: str) -> list[str]:
    """All features for a tier, including inherited ones, first-seen order."""
    seen: dict[str, None] = {}
    for f in TIER_FEATURES.get(tier, ()):
        seen.setdefault(f, None)
    for inherited in TIER_HIERARCHY.get(tier, ()):
        for f in TIER_FEATURES.get(inherited, ()):
            seen.setdefault(f, None)
    return list(seen)


def get_required_tier(feature: str) -> str:
    return FEATURE_TIER_MAP.get(feature, DEFAULT_REQUIRED_TIER)


def get_tier_display_name(tier: str) -> str:
    return TIER_DISPLAY_NAMES.get(tier, tier)


def get_tier_pricing(tier: str) -> int:
    return TIER_PRICING.get(tier, 0)


def get_feature_display_name(feature: str) -> str:
    return FEATURE_DISPLAY_NAMES.get(feature) or feature.replace("_", " ").title()


def get_feature_limits(tier: str, feature: str) -> dict[str, Any] | None:
    """Feature limits for a tier; None means full access."""
    return TIER_FEATURE_LIMITS.get(tier, {}).get(feature)


def calculate_upgrade_requirements(current_tier: str, feature: str) -> dict[str, Any]:
    if check_tier_feature(current_tier, feature):
        return {"required": False}
    return upgrade_details(current_tier, feature)


def upgrade_details(current_tier: str, feature: str) -> dict[str, Any]:
    target_tier = get_required_tier(feature)
    target_price = get_tier_pricing(target_tier)
    current_price = get_tier_pricing(current_tier)
    return {
        "required": True,
        "target_tier": target_tier,
        "target_tier_display": get_tier_display_name(target_tier),
        "target_price": target_price,
        "current_price": current_price,
        "upgrade_cost": target_price - current_price,
    }
