# catalog/models.py
import re

from django.db import models
from django.utils.text import slugify


class Product(models.Model):
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True, blank=True)
    category = models.CharField(max_length=100, blank=True, default="")
    price = models.DecimalField(max_digits=10, decimal_places=2)
    original_price = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    image_url = models.URLField(blank=True, default="")
    sizes = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        if not self.slug:
            clean_name = re.sub(r'[^\w\s-]', '', self.name)
            clean_name = re.sub(r'\s+', ' ', clean_name).strip()
            base_slug = slugify(clean_name) or "product"

            slug = base_slug
            counter = 1
            while self.__class__.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            "id": str(self.pk),
            "name": self.name,
            "slug": self.slug,
            "category": self.category,
            "price": str(self.price),
            "originalPrice": str(self.original_price) if self.original_price else None,
            "image": self.image_url,
            "sizes": self.sizes,
            "stock": self.stock_levels(),
        }

    def stock_levels(self):
        """Size -> units left, or an empty dict when stock is not tracked."""
        return {row.size: row.stock for row in self.size_stock.all()}

    def __str__(self):
        return self.name


class ProductSize(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="size_stock")
    size = models.CharField(max_length=10)
    stock = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["product", "size"]
        constraints = [
            models.UniqueConstraint(fields=["product", "size"], name="unique_product_size"),
        ]

    def __str__(self):
        return f"{self.product.name} ({self.size}): {self.stock}"
