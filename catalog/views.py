from django.core.paginator import EmptyPage, Paginator
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET

from .models import Product

PAGE_SIZE = 20


@require_GET
def product_list(request):
    """Active products, paginated 20 at a time"""
    products = Product.objects.filter(is_active=True).prefetch_related("size_stock")
    category = request.GET.get("category", "").strip()
    if category:
        products = products.filter(category__iexact=category)

    try:
        page = int(request.GET.get("page", 1))
    except ValueError:
        page = 1

    paginator = Paginator(products.order_by("name"), PAGE_SIZE)
    try:
        products_page = paginator.page(page)
    except EmptyPage:
        return JsonResponse({"success": False, "error": "No more products"}, status=404)

    return JsonResponse({
        "success": True,
        "products": [product.to_dict() for product in products_page],
        "has_next": products_page.has_next(),
    })


@require_GET
def product_detail(request, slug):
    product = get_object_or_404(Product, slug=slug, is_active=True)
    return JsonResponse({"success": True, "product": product.to_dict()})
