from .regulations import PlanExport, Regulation, RegulationPlan

__all__ = ["PlanExport", "Regulation", "RegulationPlan"]
