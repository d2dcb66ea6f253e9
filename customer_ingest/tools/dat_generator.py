"""
Generator of synthetic CLIENTES_IN_*.dat customer files.
"""

import random
import argparse
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Tuple

FIRST_NAMES = [
    "Ana", "Luis", "María", "Juan", "Sofía", "Carlos", "Lucía", "Martín",
    "Valentina", "Diego", "Camila", "Javier", "Florencia", "Pablo", "Julieta"
]

LAST_NAMES = [
    "Gomez", "Diaz", "Fernández", "López", "Martínez", "Pérez", "Rodríguez",
    "Sánchez", "Romero", "Torres", "Álvarez", "Ruiz", "Suárez", "Castro"
]

STATUSES = ["Activo", "Inactivo", "ACTIVO", "inactivo"]

# Each produces a line the parser must reject
INVALID_KINDS = ("missing_fields", "bad_date", "id_out_of_range", "bad_status")


class DatGenerator:
    """Generates realistic pipe-delimited customer lines for testing."""

    def __init__(self, seed: Optional[int] = None):
        self.random = random.Random(seed)

    def generate_valid_line(self) -> str:
        """Generate a single valid customer line."""
        first_name = self.random.choice(FIRST_NAMES)
        last_name = self.random.choice(LAST_NAMES)
        national_id = self.random.randint(1_000_000, 99_999_998)
        status = self.random.choice(STATUSES)

        entry_date = date(2015, 1, 1) + timedelta(days=self.random.randint(0, 3650))
        is_pep = self.random.choice(["true", "false", "TRUE", "False"])
        is_obligated = self.random.choice(["true", "false", ""])

        return "|".join([
            first_name,
            last_name,
            str(national_id),
            status,
            entry_date.strftime('%m/%d/%Y'),
            is_pep,
            is_obligated
        ])

    def generate_invalid_line(self, kind: Optional[str] = None) -> str:
        """Generate a line that fails one specific validation."""
        kind = kind or self.random.choice(INVALID_KINDS)
        fields = self.generate_valid_line().split("|")

        if kind == "missing_fields":
            return "|".join(fields[:self.random.randint(1, 6)])
        if kind == "bad_date":
            fields[4] = self.random.choice(["13/01/2020", "02/30/2021", "2021-03-15", ""])
        elif kind == "id_out_of_range":
            fields[2] = str(self.random.randint(99_999_999, 999_999_999))
        elif kind == "bad_status":
            fields[3] = self.random.choice(["Suspendido", "", "activ0"])
        else:
            raise ValueError(f"Unknown invalid line kind: {kind}")

        return "|".join(fields)

    def generate_file(self, output_path: str, num_lines: int = 1000, invalid_ratio: float = 0.05) -> Tuple[int, int]:
        """Write a .dat file and return (valid_lines, invalid_lines)."""
        if not 0.0 <= invalid_ratio <= 1.0:
            raise ValueError(f"invalid_ratio must be between 0 and 1, got {invalid_ratio}")

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        valid_count = 0
        invalid_count = 0

        with open(output_file, 'w', encoding='utf-8', newline='\n') as datfile:
            for _ in range(num_lines):
                if self.random.random() < invalid_ratio:
                    datfile.write(self.generate_invalid_line() + "\n")
                    invalid_count += 1
                else:
                    datfile.write(self.generate_valid_line() + "\n")
                    valid_count += 1

        return valid_count, invalid_count


def main(argv=None) -> int:
    """Main entry point for .dat generation."""
    parser = argparse.ArgumentParser(description='Generate a synthetic customer .dat file')
    parser.add_argument('--output', '-o', required=True, help='Output .dat file path')
    parser.add_argument('--count', '-c', type=int, default=1000, help='Number of lines to generate')
    parser.add_argument('--invalid-ratio', type=float, default=0.05, help='Fraction of invalid lines')
    parser.add_argument('--seed', type=int, help='Random seed for reproducible files')

    args = parser.parse_args(argv)

    generator = DatGenerator(seed=args.seed)
    valid_count, invalid_count = generator.generate_file(args.output, args.count, args.invalid_ratio)

    print(f"✅ Generated {args.count} lines in {args.output}")
    print(f"   Valid: {valid_count}, invalid: {invalid_count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
