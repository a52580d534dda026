"""Text reports for the dashboard state."""
from typing import Dict, Iterable, List, Optional

from notamdash.minima import MinimaRegistry, MinimaResult
from notamdash.models.notam import NotamRecord
from notamdash.stats import NotamStats


def display_results(results: List[Dict], max_width: int = 100) -> None:
    """Display rows in a formatted table."""
    if not results:
        print("No results found.")
        return

    # Get column names
    columns = list(results[0].keys())

    # Calculate column widths
    widths = {col: len(col) for col in columns}
    for row in results:
        for col in columns:
            val_len = len(str(row[col]))
            if val_len > widths[col]:
                widths[col] = min(val_len, max_width)

    header = " | ".join(col.ljust(widths[col]) for col in columns)
    separator = "-+-".join("-" * widths[col] for col in columns)

    print(header)
    print(separator)

    for row in results:
        print(" | ".join(str(row[col])[:widths[col]].ljust(widths[col]) for col in columns))

    print(f"\n{len(results)} row(s) returned.\n")


def report_records(records: Iterable[NotamRecord], selected_id: Optional[str] = None) -> None:
    """Display the NOTAM list."""
    print("\n=== NOTAM List ===\n")
    rows = []
    for r in records:
        description = r.description if len(r.description) <= 100 else r.description[:100] + '...'
        rows.append({
            ' ': '>' if r.notam_id == selected_id else '',
            'ID': r.notam_id,
            'Location': r.location,
            'Type': r.category.value,
            'Effective': r.effective.strftime('%Y-%m-%d'),
            'Expiry': r.expiry.strftime('%Y-%m-%d') if r.expiry else 'PERM',
            'Description': description,
        })
    if rows:
        display_results(rows)
    else:
        print("No NOTAMs found matching your criteria.\n")


def report_statistics(stats: NotamStats) -> None:
    """Display summary statistics."""
    print("\n=== NOTAM Statistics ===\n")
    print(f"Total NOTAMs: {stats.total}")
    print(f"Active today: {stats.active_today}")
    print("By type:")
    for category, count in stats.by_category.items():
        print(f"  {category:<10} {count}")
    print("By region (first letter of location):")
    for region, count in sorted(stats.by_region.items()):
        print(f"  {region:<10} {count}")
    print()


def _mark(met: bool) -> str:
    return 'OK' if met else 'BELOW'


def report_minima(results: Dict[str, MinimaResult], registry: MinimaRegistry) -> None:
    """Display minima checks keyed by flight callsign or ICAO."""
    print("\n=== Minima Check ===\n")
    rows = []
    for key, result in results.items():
        minima = registry.get(key)
        rows.append({
            'Key': key,
            'Ceiling': 'N/A' if result.parsed_ceiling is None else result.parsed_ceiling,
            'Min Ceiling': minima.ceiling,
            'Ceiling OK': _mark(result.ceiling_met),
            'Visibility': 'N/A' if result.parsed_visibility is None else f"{result.parsed_visibility:g} SM",
            'Min Vis': f"{minima.visibility:g} SM",
            'Vis OK': _mark(result.visibility_met),
            'Status': 'Above Minima' if result.overall_met else 'Below Minima',
            'Override': 'yes' if registry.has_override(key) else '',
        })
    display_results(rows)
