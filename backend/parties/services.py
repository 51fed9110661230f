from django.db.models import Case, CharField, F, When
from .models import Customer


def list_customer_names():
    """
    Distinct customer labels (company, falling back to name), sorted.
    Inactive customers and blank labels are excluded.
    """
    labels = (
        Customer.objects.filter(is_active=True)
        .annotate(label=Case(
            When(company='', then=F('name')),
            default=F('company'),
            output_field=CharField(),
        ))
        .exclude(label='')
        .values_list('label', flat=True)
        .distinct()
        .order_by('label')
    )
    return list(labels)
