class PricingError(Exception):
    """Base class for anything that stops a product from being priced."""


class InvalidComposition(PricingError):
    pass


class UnknownGrade(PricingError):
    def __init__(self, dimension: str, grade: str):
        self.dimension = dimension
        self.grade = grade
        super().__init__(f"Unknown diamond {dimension} grade: {grade!r}")


class MissingRate(PricingError):
    def __init__(self, rate_name: str, material: str):
        self.rate_name = rate_name
        self.material = material
        super().__init__(f"Rate snapshot has no {rate_name} for {material}")
