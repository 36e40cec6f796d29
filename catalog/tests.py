from decimal import Decimal

from django.test import TestCase

from storefront.exceptions import ValidationFailed

from .models import Product, ProductSize
from .stock import check_stock, reduce_stock


class ProductTests(TestCase):

    def test_slug_is_unique(self):
        first = Product.objects.create(name="Linen Shirt!", price=Decimal("999"))
        second = Product.objects.create(name="Linen Shirt", price=Decimal("999"))

        self.assertEqual(first.slug, "linen-shirt")
        self.assertEqual(second.slug, "linen-shirt-1")

    def test_listing_hides_inactive_products(self):
        Product.objects.create(name="Kurta", category="Ethnic", price=Decimal("1499"))
        Product.objects.create(name="Old Kurta", category="Ethnic", price=Decimal("499"), is_active=False)

        body = self.client.get("/api/products/", {"category": "ethnic"}).json()

        self.assertEqual([p["name"] for p in body["products"]], ["Kurta"])
        self.assertFalse(body["has_next"])

    def test_detail(self):
        product = Product.objects.create(name="Kurta", price=Decimal("1499"), sizes=["S", "M"])

        response = self.client.get(f"/api/products/{product.slug}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["product"]["price"], "1499.00")
        self.assertEqual(self.client.get("/api/products/missing/").status_code, 404)


class ResponseHeaderTests(TestCase):

    def test_security_headers(self):
        response = self.client.get("/api/products/")
        self.assertEqual(response["X-Content-Type-Options"], "nosniff")
        self.assertEqual(response["X-Frame-Options"], "DENY")
        self.assertFalse(response.has_header("Pragma"))

    def test_checkout_responses_are_not_cached(self):
        response = self.client.get("/api/checkout/state/")
        self.assertIn("no-store", response["Cache-Control"])
        self.assertEqual(response["Pragma"], "no-cache")


class StockTests(TestCase):

    def setUp(self):
        self.product = Product.objects.create(name="Kurta", price=Decimal("1499"), sizes=["S", "M"])

    def test_untracked_product_never_runs_out(self):
        check_stock(self.product, "M", 20)
        reduce_stock(self.product, "M", 20)
        self.assertEqual(self.product.stock_levels(), {})

    def test_reduce_and_refuse(self):
        ProductSize.objects.create(product=self.product, size="S", stock=2)
        ProductSize.objects.create(product=self.product, size="M", stock=1)

        reduce_stock(self.product, "S", 2)
        with self.assertRaises(ValidationFailed) as ctx:
            reduce_stock(self.product, "S", 1)

        self.assertEqual(ctx.exception.code, "out_of_stock")
        self.assertEqual(self.product.stock_levels(), {"M": 1, "S": 0})
        self.assertTrue(Product.objects.get(pk=self.product.pk).is_active)

    def test_size_without_row_is_out_of_stock(self):
        ProductSize.objects.create(product=self.product, size="S", stock=5)
        with self.assertRaises(ValidationFailed):
            check_stock(self.product, "M", 1)
        with self.assertRaises(ValidationFailed):
            reduce_stock(self.product, "M", 1)

    def test_stock_is_listed(self):
        ProductSize.objects.create(product=self.product, size="S", stock=4)
        body = self.client.get(f"/api/products/{self.product.slug}/").json()
        self.assertEqual(body["product"]["stock"], {"S": 4})
