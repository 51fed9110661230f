from django.db import models


class Store(models.Model):
    """Selling locations; every POS terminal session sells from one store"""
    STORE_TYPE_CHOICES = [
        ('showroom', 'Showroom'),
        ('factory_outlet', 'Factory Outlet'),
        ('warehouse', 'Warehouse'),
        ('online', 'Online'),
    ]

    name = models.CharField(max_length=200)
    code = models.CharField(max_length=50, unique=True)
    store_type = models.CharField(max_length=20, choices=STORE_TYPE_CHOICES, default='showroom')
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'stores'
