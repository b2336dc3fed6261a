"""Suggestion engine: ordered next steps derived from the verdict and LLC facts."""


def build_suggestions(verdict: dict, has_llc: bool = False, llc_age_months: float | None = None) -> list[str]:
    out: list[str] = []
    opt = verdict.get("optimization", {})
    metrics = verdict.get("metrics", {})
    personal = verdict.get("personal", {})
    fundable = bool(verdict.get("fundable"))

    util = metrics.get("utilization_pct") or 0
    total_inquiries = (metrics.get("inquiries") or {}).get("total", 0)
    negatives = metrics.get("negative_accounts") or 0
    llc_age = llc_age_months or 0

    if opt.get("needs_util_reduction"):
        if util >= 80:
            out.append(
                "Your utilization is extremely high (80%+). Paying balances down aggressively "
                "will unlock a large jump in scores and approvals."
            )
        elif util >= 50:
            out.append(
                "Your utilization is high (50-80%). Reducing revolving balances under 30% "
                "will significantly improve approval odds and limits."
            )
        else:
            out.append("Lower your revolving utilization below ~30% for optimal approval odds and limit assignments.")

    if opt.get("needs_new_primary_revolving"):
        out.append(
            "Add a strong primary revolving account (not AU) with a $5,000+ limit "
            "to anchor your profile before stacking."
        )

    if opt.get("needs_inquiry_cleanup"):
        if total_inquiries > 12:
            out.append(
                "You have a high number of recent hard inquiries. Cleaning these up will "
                "prevent auto-declines and open up better approvals."
            )
        else:
            out.append(
                "Removing unnecessary or duplicate hard inquiries will improve automated "
                "underwriting scores and limit increases."
            )

    if opt.get("needs_negative_cleanup"):
        if negatives > 5:
            out.append(
                "You have multiple negative accounts. Prioritize charge-offs and collections "
                "first to unlock the biggest score gains."
            )
        else:
            out.append(
                "You have some negative accounts. Targeted disputes and settlement strategy "
                "will help remove them from your reports."
            )

    if opt.get("needs_file_buildout"):
        if opt.get("file_all_negative"):
            out.append(
                "Your file is mostly negative or very thin. Add 1-2 new primary tradelines "
                "and a small installment account to rebuild your foundation."
            )
        elif not personal.get("highest_revolving_limit") and not personal.get("highest_installment_amount"):
            out.append(
                "Your file is thin. Add at least one primary credit card and one small "
                "installment loan to establish depth."
            )
        else:
            out.append(
                "Add a couple of additional positive tradelines to strengthen your profile "
                "and unlock higher funding tiers."
            )

    if not has_llc:
        if fundable:
            out.append(
                "You're approved, but you don't have an LLC. Forming one now lets you "
                "unlock business funding immediately."
            )
        else:
            out.append(
                "You don't have an LLC yet. Form an LLC now so it can season while your "
                "credit is being repaired."
            )
    elif llc_age < 6:
        out.append(
            "Your LLC is under 6 months old. Approvals and limits improve significantly "
            "after it seasons past 6 months."
        )
    elif llc_age < 24:
        out.append(
            "Your LLC is seasoning well. Once it matures past 12-24 months, business "
            "approvals increase even more."
        )
    elif fundable:
        out.append(
            "Your LLC is fully seasoned. Combined with a strong personal profile, you are "
            "positioned for top-tier business limits."
        )
    else:
        out.append(
            "Your LLC is seasoned. Once personal cleanup finishes, you will unlock the "
            "highest tiers of business approvals."
        )

    return out
